# datadesk/core/sql_analysis.py
from __future__ import annotations
from typing import List

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import ParseError, TokenError


def tables_referenced(sql: str) -> List[str]:
    """Table names a statement reads from (CTE names excluded). Empty on parse failure."""
    try:
        tree = sqlglot.parse_one(sql, read="mysql")
    except (ParseError, TokenError):
        return []
    if tree is None:
        return []
    ctes = {c.alias_or_name for c in tree.find_all(exp.CTE)}
    names = {t.name for t in tree.find_all(exp.Table) if t.name and t.name not in ctes}
    return sorted(names)

