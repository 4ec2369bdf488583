# datadesk/routers/cleanup.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from datadesk.deps import cleaner, duplicates, tables
from datadesk.core.cleanup import build_update_sql
from datadesk.core.duplicates import duplicate_names, entities_named
from datadesk.core.models import CapitalizeNamesRequest, CleanResult, CleanupPreviewRequest, CleanupRequest, DataSource, Row
from datadesk.core.name_case import capitalize_names
from datadesk.core.read_only_db_executor import describe_db_error
from datadesk.core.redact import redact
from datadesk.core.table_registry import DmsTable, EntitiesTable, UnknownTableError
from datadesk.routers.tables import pagination

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cleanup", tags=["cleanup"])


def _preview(table: str, key_field: str, results: List[CleanResult], page_info: Optional[dict] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "count": len(results),
        "needsReview": sum(1 for r in results if r.needsReview),
        "suggestedUpdates": sum(1 for r in results if r.is_applicable),
        "keyField": key_field,
        "results": [r.model_dump(mode="json") for r in results],
        "sql": build_update_sql(table, key_field, results),
    }
    if page_info is not None:
        data["pagination"] = page_info
    return data


@router.post("", summary="Clean one page of a table (dry run by default)")
async def run_cleanup(body: CleanupRequest):
    try:
        accessor = tables().accessor(body.db, body.table)
    except UnknownTableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        rows = await accessor.find_many(skip=(body.page - 1) * body.limit, take=body.limit)
        total = await accessor.count()
    except SQLAlchemyError as e:
        logger.error("reading %s.%s failed: %s", body.db.value, body.table, describe_db_error(e))
        raise HTTPException(status_code=500, detail=redact(describe_db_error(e)))

    page_info = pagination(body.page, body.limit, total)
    if not rows:
        return {"success": True, "message": "No rows to clean.", "data": _preview(accessor.name, body.keyField or "id", [], page_info)}

    svc = cleaner()
    key_field = await svc.resolve_key_field(accessor, rows[0], body.keyField)
    results = await svc.clean_batch(rows, key_field)

    if body.dryRun:
        data = _preview(accessor.name, key_field, results, page_info)
        return {
            "success": True,
            "message": f"Dry run: {data['suggestedUpdates']} safe updates, {data['needsReview']} need review.",
            "data": data,
        }

    applied = await svc.apply_cleanup(accessor, results, key_field)
    needs_review = sum(1 for r in results if r.needsReview)
    return {
        "success": not applied.errors,
        "message": f"Updated {applied.updatedCount} of {len(results)} rows.",
        "data": {
            "updatedCount": applied.updatedCount,
            "totalProcessed": len(results),
            "needsReviewCount": needs_review,
            "errors": [redact(e) for e in applied.errors],
            "keyField": applied.keyField,
        },
    }


@router.post("/preview", summary="Clean caller-supplied rows without touching storage")
async def preview_cleanup(body: CleanupPreviewRequest):
    if not body.data:
        raise HTTPException(status_code=400, detail="No rows supplied.")
    svc = cleaner()
    key_field = await svc.resolve_key_field(None, body.data[0], body.keyField)
    results = await svc.clean_batch(body.data, key_field)
    data = _preview(body.table, key_field, results)
    return {"success": True, "message": f"Cleaned {data['count']} rows.", "data": data}


def _read_failed(what: str, e: SQLAlchemyError) -> HTTPException:
    logger.error("reading %s failed: %s", what, describe_db_error(e))
    return HTTPException(status_code=500, detail=redact(describe_db_error(e)))


@router.post("/dms/capitalize-names", summary="Capitalize first and last names of one page of DMS users")
async def capitalize_user_names(body: CapitalizeNamesRequest):
    accessor = tables().accessor(DataSource.DMS, DmsTable.USERS.value)
    try:
        rows = await accessor.find_many(skip=(body.page - 1) * body.limit, take=body.limit)
        total = await accessor.count()
    except SQLAlchemyError as e:
        raise _read_failed("dms.users", e)

    result = await capitalize_names(accessor, rows, dry_run=body.dryRun)
    verb = "Would change" if body.dryRun else f"Updated {result.updatedCount} rows;"
    return {
        "success": not result.errors,
        "message": f"{verb} {len(result.changes)} names across {len(rows)} users.",
        "data": {**result.model_dump(mode="json"), "dryRun": body.dryRun, "pagination": pagination(body.page, body.limit, total)},
    }


async def _duplicate_listing(entity_type: Optional[int], page: int, limit: int):
    accessor = tables().accessor(DataSource.ENTITIES, EntitiesTable.ENTITY.value)
    try:
        groups, total = await duplicate_names(accessor, entity_type, skip=(page - 1) * limit, take=limit)
    except SQLAlchemyError as e:
        raise _read_failed("entities.entity", e)
    return {"success": True, "data": groups, "pagination": pagination(page, limit, total)}


@router.get("/entities/similar/by-name", summary="Entity names shared by more than one active entity")
async def similar_entities_by_name(page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=1000)):
    return await _duplicate_listing(None, page, limit)


@router.get("/entities/similar/by-name/{entity_type}", summary="Shared entity names within one entity type")
async def similar_entities_by_name_and_type(
    entity_type: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
):
    return await _duplicate_listing(entity_type, page, limit)


@router.get("/entities/by-name/{name}", summary="Active entities with an exact name, with their parents and children")
async def entities_by_name(name: str, entity_type: Optional[int] = Query(None, alias="type")):
    if not name.strip():
        raise HTTPException(status_code=400, detail="Name is required.")
    registry = tables()
    try:
        data = await entities_named(
            registry.accessor(DataSource.ENTITIES, EntitiesTable.ENTITY.value),
            registry.accessor(DataSource.ENTITIES, EntitiesTable.ENTITY_MAPPING.value),
            name,
            entity_type,
        )
    except SQLAlchemyError as e:
        raise _read_failed("entities.entity", e)
    return {"success": True, "message": f"Found {len(data['entities'])} entities named {name!r}.", "data": data}


@router.post("/entities/duplicates/analyze", summary="Decide which same-named entities to keep and plan the merge")
async def analyze_duplicates(entities: List[Row] = Body(...)):
    if any(e.get("entity_id") is None for e in entities):
        raise HTTPException(status_code=400, detail="Every entity needs an entity_id.")
    analysis = await duplicates().analyze(entities)
    return {
        "success": True,
        "message": f"{analysis.duplicateGroupsCount} duplicate groups analyzed.",
        "data": analysis.model_dump(mode="json"),
    }
