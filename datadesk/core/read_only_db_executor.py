# datadesk/core/read_only_db_executor.py
from __future__ import annotations
import logging
from typing import List, Dict, Any, Optional
from decimal import Decimal
from datetime import date, datetime, time, timedelta

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from datadesk.core.models import Row
from datadesk.core.sql_guard import assert_read_only

logger = logging.getLogger(__name__)


class QueryExecutionError(Exception):
    """The database rejected or failed a statement. `message` is a one-line diagnostic."""

    def __init__(self, message: str, sql: str = ""):
        super().__init__(message)
        self.message = message
        self.sql = sql


def describe_db_error(exc: BaseException) -> str:
    """
    One-line diagnostic for feeding back to the planner.
    MySQL drivers carry (code, message) in `orig.args`; prefer the message part.
    """
    orig = getattr(exc, "orig", None) if isinstance(exc, DBAPIError) else None
    if orig is not None:
        args = getattr(orig, "args", ())
        if len(args) >= 2 and isinstance(args[1], str) and args[1].strip():
            return args[1].strip().splitlines()[0]
        msg = str(orig).strip()
        if msg:
            return msg.splitlines()[0]
    msg = str(exc).strip()
    return msg.splitlines()[0] if msg else type(exc).__name__


def _json_safe(v: Any) -> Any:
    """Coerce DB types into JSON-serializable values."""
    if isinstance(v, Decimal):
        # Use float for analytics; switch to str if you need exact precision
        return float(v)
    if isinstance(v, (date, datetime, time)):
        return v.isoformat()
    if isinstance(v, timedelta):
        return v.total_seconds()
    if isinstance(v, (bytes, bytearray)):
        return v.decode("utf-8", errors="replace")
    return v


def json_safe_row(row: Any) -> Row:
    return {k: _json_safe(v) for k, v in dict(row).items()}


class ReadOnlyDbExecutor:
    def __init__(self, engine: AsyncEngine, statement_timeout_ms: int):
        self.engine = engine
        self.statement_timeout_ms = statement_timeout_ms

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        """
        Run one read-only SELECT and return JSON-safe rows.
        The statement must already have its LIMIT resolved.
        """
        assert_read_only(sql)
        try:
            async with self.engine.connect() as conn:
                await conn.exec_driver_sql(
                    f"SET SESSION MAX_EXECUTION_TIME = {int(self.statement_timeout_ms)}"
                )
                result = await conn.execute(text(sql), params or {})
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            message = describe_db_error(e)
            logger.warning("query failed: %s | sql=%s", message, sql)
            raise QueryExecutionError(message, sql) from e
        return [json_safe_row(r) for r in rows]
