# datadesk/routers/tables.py
from __future__ import annotations

import logging
import math

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from datadesk.deps import tables
from datadesk.core.models import DataSource
from datadesk.core.read_only_db_executor import describe_db_error
from datadesk.core.redact import redact
from datadesk.core.table_registry import UnknownTableError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/tables", tags=["tables"])


def pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit) if limit else 0}


@router.get("/{db}/{table}", summary="Paginated rows of a registered table")
async def list_rows(
    db: DataSource,
    table: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=1000),
):
    try:
        accessor = tables().accessor(db, table)
    except UnknownTableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        rows = await accessor.find_many(skip=(page - 1) * limit, take=limit)
        total = await accessor.count()
    except SQLAlchemyError as e:
        logger.error("reading %s.%s failed: %s", db.value, table, describe_db_error(e))
        raise HTTPException(status_code=500, detail=redact(describe_db_error(e)))

    return {"success": True, "data": rows, "pagination": pagination(page, limit, total)}
