# datadesk/core/sql_guard.py
from __future__ import annotations
import re
from typing import NamedTuple

FORBIDDEN_KEYWORDS = (
    "UPDATE", "DELETE", "INSERT", "DROP", "ALTER",
    "CREATE", "TRUNCATE", "RENAME", "GRANT", "REVOKE",
)
MAX_LIMIT = 100
LIMIT_PLACEHOLDER = "LIMIT ?"

ALLOW = re.compile(r"^\s*select\b", re.I)
DANGERS = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.I)
BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.S)
LINE_COMMENT = re.compile(r"--[^\n]*")
WHITESPACE = re.compile(r"\s+")
LITERAL_LIMIT = re.compile(
    r"\blimit\s+(?P<first>\d+)(?:\s*,\s*(?P<count>\d+)|\s+offset\s+(?P<offset>\d+))?\b", re.I
)
PLACEHOLDER_LIMIT = re.compile(r"\blimit\s+(?:(?P<offset>\d+)\s*,\s*)?\?", re.I)
OFFSET_PLACEHOLDER = re.compile(r"\blimit\s+\?\s*,", re.I)


class SqlValidationError(ValueError):
    pass


class SanitizedSql(NamedTuple):
    sql: str
    # row count of the first literal LIMIT before clamping, 0 if none
    limit: int
    # a literal LIMIT was present, so `limit` is meaningful even when 0
    has_limit: bool = False


def _check_forbidden(sql: str) -> None:
    m = DANGERS.search(sql)
    if m:
        raise SqlValidationError(f"Forbidden keyword detected: {m.group(1).upper()}")


def _placeholder(m: re.Match) -> str:
    """`LIMIT n` -> `LIMIT ?`, `LIMIT a, n` -> `LIMIT a, ?`, `LIMIT n OFFSET a` -> `LIMIT ? OFFSET a`."""
    if m.group("count") is not None:
        return f"LIMIT {m.group('first')}, ?"
    if m.group("offset") is not None:
        return f"{LIMIT_PLACEHOLDER} OFFSET {m.group('offset')}"
    return LIMIT_PLACEHOLDER


def sanitize_sql(raw_sql: str) -> SanitizedSql:
    """
    Validate and normalize a model-generated statement.

    Rejects any forbidden keyword and anything that is not a single SELECT,
    strips comments, collapses whitespace and swaps the row count of a literal
    LIMIT for the `?` placeholder so the caller can choose the final row cap.
    An offset, in either MySQL form, is kept as written.
    """
    s = (raw_sql or "").strip()
    _check_forbidden(s)
    s = BLOCK_COMMENT.sub(" ", s)
    s = LINE_COMMENT.sub(" ", s)
    s = WHITESPACE.sub(" ", s).strip()
    if s.endswith(";"):
        s = s[:-1].rstrip()
    if not ALLOW.search(s):
        raise SqlValidationError("Only SELECT queries are allowed")
    if ";" in s:
        raise SqlValidationError("Multiple statements are not allowed")
    if OFFSET_PLACEHOLDER.search(s):
        raise SqlValidationError("LIMIT placeholder must stand for the row count, not the offset")

    m = LITERAL_LIMIT.search(s)
    if not m:
        return SanitizedSql(sql=s, limit=0)
    count = m.group("count") if m.group("count") is not None else m.group("first")
    s = s[: m.start()] + _placeholder(m) + s[m.end():]
    return SanitizedSql(sql=s, limit=int(count), has_limit=True)


def has_limit_placeholder(sql: str) -> bool:
    return PLACEHOLDER_LIMIT.search(sql) is not None


def apply_limit(sql: str, limit: int, max_limit: int = MAX_LIMIT) -> str:
    """Fill the row-count placeholder with `limit` clamped to 0..max_limit; any offset is untouched."""
    n = max(0, min(int(limit), max_limit))

    def fill(m: re.Match) -> str:
        offset = m.group("offset")
        return f"LIMIT {offset}, {n}" if offset is not None else f"LIMIT {n}"

    return PLACEHOLDER_LIMIT.sub(fill, sql, count=1)


def assert_read_only(sql: str) -> str:
    """Execution-time guard: same keyword and SELECT checks, no rewriting."""
    s = (sql or "").strip()
    _check_forbidden(s)
    if not ALLOW.search(BLOCK_COMMENT.sub(" ", s)):
        raise SqlValidationError("Only SELECT queries are allowed")
    return s
