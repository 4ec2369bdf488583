# datadesk/routers/health.py
from __future__ import annotations

import logging
from fastapi import APIRouter
from datadesk.deps import db
from datadesk.core.models import DataSource
from datadesk.core.redact import redact

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness check")
def health_check():
    return {"status": "ok"}


@router.get("/health/db", summary="Database connectivity (read-only)")
async def db_health():
    out = {}
    for source in DataSource:
        try:
            rows = await db(source).fetch_all("SELECT 1 AS ok")
            out[source.value] = {"ok": True, "rows": rows}
        except Exception as ex:  # noqa: BLE001 - report any failure as not ready
            logger.warning("db health check failed for %s: %s", source.value, ex)
            out[source.value] = {"ok": False, "error": redact(str(ex))}
    return {"ok": all(v["ok"] for v in out.values()), **out}
