# datadesk/core/name_case.py
from __future__ import annotations
import logging
from typing import Any, List, Sequence

from sqlalchemy.exc import SQLAlchemyError

from datadesk.core.models import CapitalizeResult, NameChange, Row
from datadesk.core.read_only_db_executor import describe_db_error
from datadesk.core.table_registry import TableAccessor

logger = logging.getLogger(__name__)

USER_NAME_FIELDS = ("first_name", "last_name")
USER_KEY_FIELD = "id"


def capitalize_word(word: str) -> str:
    if not word:
        return ""
    lower = word.lower()
    return lower[:1].upper() + lower[1:]


def capitalize_name(value: Any) -> Any:
    """'mary  ANN' -> 'Mary  Ann'; spacing is kept and non-strings pass through."""
    if not isinstance(value, str):
        return value
    return " ".join(capitalize_word(w) for w in value.split(" "))


async def capitalize_names(
    accessor: TableAccessor,
    rows: Sequence[Row],
    *,
    fields: Sequence[str] = USER_NAME_FIELDS,
    key_field: str = USER_KEY_FIELD,
    dry_run: bool = True,
) -> CapitalizeResult:
    """Capitalize name columns row by row; only rows whose names actually change are written."""
    changes: List[NameChange] = []
    errors: List[str] = []
    updated = 0
    for row in rows:
        data = {}
        for field in fields:
            if field not in row:
                continue
            after = capitalize_name(row[field])
            if after != row[field]:
                data[field] = after
                changes.append(NameChange(key=row.get(key_field), field=field, before=row[field], after=after))
        if dry_run or not data:
            continue
        if key_field not in row:
            errors.append(f"Row has no key field '{key_field}'; skipped")
            continue

        key_value = row[key_field]
        try:
            matched = await accessor.update({key_field: key_value}, data)
        except (SQLAlchemyError, ValueError) as e:
            message = describe_db_error(e) if isinstance(e, SQLAlchemyError) else str(e)
            logger.warning("name update failed for %s.%s=%s: %s", accessor.name, key_field, key_value, message)
            errors.append(f"Failed to update {accessor.name}.{key_field}={key_value}: {message}")
            continue
        if not matched:
            errors.append(f"No row matched {accessor.name}.{key_field}={key_value}; nothing updated")
            continue
        updated += 1

    logger.info(
        "capitalized names in %s: rows=%d changes=%d updated=%d errors=%d dry_run=%s",
        accessor.name, len(rows), len(changes), updated, len(errors), dry_run,
    )
    return CapitalizeResult(keyField=key_field, changes=changes, updatedCount=updated, errors=errors)
