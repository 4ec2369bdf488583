# datadesk/routers/natural_query.py
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from datadesk.deps import correction_loop, db, planner, router as source_router
from datadesk.core.models import DataSource, NaturalQueryRequest, NaturalQueryResult, RoutingDecision
from datadesk.core.redact import redact

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["natural-query"])


def _payload(result: NaturalQueryResult, decision: RoutingDecision) -> Dict[str, Any]:
    data = result.model_dump(mode="json")
    data["routing"] = decision.model_dump(mode="json")
    return data


def _failure_message(result: NaturalQueryResult) -> str:
    if result.errorFeedback:
        return f"Query failed after {result.correctionAttempts} correction attempts: {result.errorFeedback[-1].error}"
    return result.explanation or "No valid query could be generated."


@router.post("/natural-query", summary="Answer a natural-language question with read-only SQL")
async def natural_query(body: NaturalQueryRequest):
    question = body.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Question must not be empty.")

    decision = await source_router().route(question)

    if decision.target == "general":
        result = NaturalQueryResult(
            success=True,
            question=question,
            routingConfidence=decision.confidence,
            explanation=decision.markdownResponse or "",
        )
        return {"success": True, "message": decision.markdownResponse, "data": _payload(result, decision)}

    if decision.target == "unknown":
        raise HTTPException(
            status_code=400,
            detail=f"Could not determine a data source for this question. {decision.reason}",
        )

    source = DataSource(decision.target)
    result = await correction_loop().execute(question, planner(source), db(source), limit=body.limit)
    result = result.model_copy(update={"dataSource": source, "routingConfidence": decision.confidence})

    if not result.success:
        logger.info("natural query failed source=%s question=%r", source.value, question)
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": redact(_failure_message(result)),
                "data": _payload(result, decision),
            },
        )

    return {
        "success": True,
        "message": f"Found {len(result.results)} rows in {source.value}.",
        "data": _payload(result, decision),
    }
