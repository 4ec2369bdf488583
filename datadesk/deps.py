# datadesk/deps.py
from __future__ import annotations
from functools import lru_cache
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from datadesk.settings import Settings
from datadesk.core.cleanup import BatchCleanupOrchestrator
from datadesk.core.correction_loop import CorrectionLoop
from datadesk.core.data_source_router import DataSourceRouter
from datadesk.core.duplicates import EntityDuplicateAnalyzer
from datadesk.core.gemini_client import GeminiClient
from datadesk.core.models import DataSource
from datadesk.core.query_planner import QueryPlanGenerator
from datadesk.core.read_only_db_executor import ReadOnlyDbExecutor
from datadesk.core.table_registry import TableRegistry
from datadesk.prompts.versioned.v1.dms import DMS_SYSTEM_PROMPT
from datadesk.prompts.versioned.v1.entities import ENTITIES_SYSTEM_PROMPT

SYSTEM_PROMPTS = {
    DataSource.ENTITIES: ENTITIES_SYSTEM_PROMPT,
    DataSource.DMS: DMS_SYSTEM_PROMPT,
}


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings()


@lru_cache(maxsize=1)
def engines() -> Dict[DataSource, AsyncEngine]:
    s = settings()
    # Pre-ping keeps connections healthy over time
    return {
        DataSource.ENTITIES: create_async_engine(s.ENTITIES_DB_URL, pool_pre_ping=True),
        DataSource.DMS: create_async_engine(s.DMS_DB_URL, pool_pre_ping=True),
    }


@lru_cache(maxsize=1)
def gemini() -> GeminiClient:
    s = settings()
    return GeminiClient(
        api_key=s.GEMINI_API_KEY,
        model=s.GEMINI_MODEL,
        fallback_model=s.GEMINI_FALLBACK_MODEL,
        default_timeout_s=s.PLAN_TIMEOUT_S,
    )


@lru_cache(maxsize=2)
def db(source: DataSource) -> ReadOnlyDbExecutor:
    return ReadOnlyDbExecutor(
        engine=engines()[source],
        statement_timeout_ms=settings().STATEMENT_TIMEOUT_MS,
    )


@lru_cache(maxsize=1)
def tables() -> TableRegistry:
    return TableRegistry(engines())


@lru_cache(maxsize=1)
def router() -> DataSourceRouter:
    return DataSourceRouter(gemini(), timeout_s=settings().ROUTER_TIMEOUT_S)


@lru_cache(maxsize=2)
def planner(source: DataSource) -> QueryPlanGenerator:
    s = settings()
    return QueryPlanGenerator(
        gemini(),
        SYSTEM_PROMPTS[source],
        source=source,
        max_retries=s.PLAN_MAX_RETRIES,
        timeout_s=s.PLAN_TIMEOUT_S,
    )


@lru_cache(maxsize=1)
def correction_loop() -> CorrectionLoop:
    s = settings()
    return CorrectionLoop(max_correction_attempts=s.MAX_CORRECTION_ATTEMPTS, max_limit=s.SQL_MAX_LIMIT)


@lru_cache(maxsize=1)
def cleaner() -> BatchCleanupOrchestrator:
    s = settings()
    return BatchCleanupOrchestrator(
        gemini(),
        max_concurrent=s.CLEANUP_MAX_CONCURRENT,
        retry_attempts=s.CLEANUP_RETRY_ATTEMPTS,
        retry_delay_base_ms=s.CLEANUP_RETRY_DELAY_BASE_MS,
        timeout_ms=s.CLEANUP_TIMEOUT_MS,
        max_bytes_per_chunk=s.CLEANUP_MAX_BYTES_PER_CHUNK,
    )


@lru_cache(maxsize=1)
def duplicates() -> EntityDuplicateAnalyzer:
    s = settings()
    return EntityDuplicateAnalyzer(
        gemini(),
        retry_attempts=s.CLEANUP_RETRY_ATTEMPTS,
        retry_delay_base_ms=s.CLEANUP_RETRY_DELAY_BASE_MS,
        timeout_ms=s.CLEANUP_TIMEOUT_MS,
    )
