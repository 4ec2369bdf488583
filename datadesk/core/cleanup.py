# datadesk/core/cleanup.py
from __future__ import annotations
import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from datadesk.core.gemini_client import GeminiClient, GenerationError, parse_json_object
from datadesk.core.models import ApplyResult, ChatMessage, CleanResult, Row
from datadesk.core.read_only_db_executor import describe_db_error
from datadesk.core.table_registry import TableAccessor
from datadesk.prompts.versioned.v1.cleanup import (
    CLEANUP_SYSTEM_PROMPT,
    CLEANUP_USER_PROMPT,
    KEY_FIELD_SYSTEM_PROMPT,
    KEY_FIELD_USER_PROMPT,
)

logger = logging.getLogger(__name__)

DEFAULT_KEY_FIELD = "id"
FAILED_BATCH_NOTE = "Automatic cleaning failed after {ATTEMPTS} attempts ({ERROR}); review manually."


def estimate_bytes(rows: Sequence[Row]) -> int:
    """UTF-8 size of the rows as JSON; this is what the prompt carries."""
    return len(json.dumps(list(rows), default=str, ensure_ascii=False).encode("utf-8"))


def sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, default=str)
    return "'" + str(value).replace("'", "''") + "'"


def build_update_sql(table: str, key_field: str, results: Sequence[CleanResult], now: Optional[datetime] = None) -> str:
    """Dry-run script of the UPDATEs `apply_cleanup` would run; nothing is executed."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    updates: List[str] = []
    for r in results:
        if not r.is_applicable:
            continue
        sets = ",\n  ".join(
            f"`{field}` = {sql_literal(r.cleaned.get(field))}"
            for field in r.changes
            if field in r.cleaned
        )
        updates.append(
            f"UPDATE `{table}`\nSET\n  {sets}\nWHERE `{key_field}` = {sql_literal(r.original.get(key_field))};"
        )

    review = sum(1 for r in results if r.needsReview)
    lines = [
        f"-- AUTO-CLEAN REPORT ({stamp})",
        f"-- Database Table: {table}",
        f"-- Rows Processed: {len(results)}",
        f"-- Safe Updates: {len(updates)}",
        f"-- Requires Review: {review}",
        "",
        *updates,
        "",
        "-- EXECUTE WITH CAUTION! Review changes before applying."
        if updates
        else "-- No automatic updates recommended.",
    ]
    return "\n".join(lines)


def merge_cleaned(original: Row, item: Any, key_field: str) -> CleanResult:
    """
    Fold one model result onto its source row.
    Only columns already present in the row can change; touching the key field forces review.
    """
    if not isinstance(item, dict) or not isinstance(item.get("cleaned"), dict):
        raise GenerationError("result item has no 'cleaned' object")

    cleaned = dict(original)
    for k, v in item["cleaned"].items():
        if k in original:
            cleaned[k] = v

    reasons = item.get("changes") if isinstance(item.get("changes"), dict) else {}
    changes: Dict[str, str] = {}
    for k in original:
        if cleaned[k] != original[k]:
            changes[k] = str(reasons.get(k) or "modified")

    needs_review = item.get("needsReview") is True
    suggestions = item.get("suggestions") if isinstance(item.get("suggestions"), str) else None
    if key_field in changes:
        needs_review = True
        suggestions = (suggestions + " " if suggestions else "") + f"Key field '{key_field}' was modified."

    return CleanResult(
        original=original,
        cleaned=cleaned,
        changes=changes,
        needsReview=needs_review,
        suggestions=suggestions or None,
    )


def _failure(exc: BaseException, timeout_ms: int) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"timed out after {timeout_ms}ms"
    return str(exc)


def fallback_batch(rows: Sequence[Row], note: str) -> List[CleanResult]:
    return [
        CleanResult(
            original=row,
            cleaned=dict(row),
            changes={},
            needsReview=True,
            isFailed=True,
            suggestions=note,
        )
        for row in rows
    ]


class BatchCleanupOrchestrator:
    """
    Runs the model-backed cleaner over arbitrarily many rows.

    Rows are split into byte-bounded contiguous chunks; at most `max_concurrent`
    chunk calls are in flight. Each call is time-boxed and retried with exponential
    backoff; a chunk that never succeeds degrades to needs-review rows instead of
    failing the whole run. Output order always matches input order.
    """

    def __init__(
        self,
        llm: GeminiClient,
        *,
        max_concurrent: int = 3,
        retry_attempts: int = 3,
        retry_delay_base_ms: int = 1000,
        timeout_ms: int = 30_000,
        max_bytes_per_chunk: int = 3_000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.llm = llm
        self.max_concurrent = max(1, int(max_concurrent))
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay_base_ms = retry_delay_base_ms
        self.timeout_ms = timeout_ms
        self.max_bytes_per_chunk = max(1, int(max_bytes_per_chunk))
        self._sleep = sleep

    # ---- chunking ----

    def chunk_count(self, rows: Sequence[Row]) -> int:
        if not rows:
            return 0
        n = max(1, math.ceil(estimate_bytes(rows) / self.max_bytes_per_chunk))
        return min(n, len(rows))

    def chunk_rows(self, rows: Sequence[Row]) -> List[List[Row]]:
        k = self.chunk_count(rows)
        if k == 0:
            return []
        size, extra = divmod(len(rows), k)
        chunks: List[List[Row]] = []
        start = 0
        for i in range(k):
            end = start + size + (1 if i < extra else 0)
            chunks.append(list(rows[start:end]))
            start = end
        return chunks

    # ---- cleaning ----

    async def clean_batch(self, rows: Sequence[Row], key_field: str = DEFAULT_KEY_FIELD) -> List[CleanResult]:
        chunks = self.chunk_rows(rows)
        if not chunks:
            return []
        logger.info(
            "cleaning %d rows in %d chunks (max %d concurrent)", len(rows), len(chunks), self.max_concurrent
        )
        slots: List[Optional[CleanResult]] = [None] * len(rows)
        gate = asyncio.Semaphore(self.max_concurrent)

        async def run(index: int, offset: int, chunk: List[Row]) -> None:
            async with gate:
                out = await self._process_with_retry(index, chunk, key_field)
            slots[offset: offset + len(chunk)] = out

        tasks = []
        offset = 0
        for i, chunk in enumerate(chunks):
            tasks.append(run(i, offset, chunk))
            offset += len(chunk)
        await asyncio.gather(*tasks)
        return [r for r in slots if r is not None]

    async def _process_with_retry(self, index: int, chunk: List[Row], key_field: str) -> List[CleanResult]:
        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "chunk %d attempt %d/%d failed: %s",
                index, state.attempt_number, self.retry_attempts, _failure(state.outcome.exception(), self.timeout_ms),
            )

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_delay_base_ms / 1000),
            retry=retry_if_exception_type((asyncio.TimeoutError, GenerationError)),
            before_sleep=log_retry,
            sleep=self._sleep,
        )
        last_error = "no attempt made"
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.wait_for(
                        self._call_cleaner(chunk, key_field), timeout=self.timeout_ms / 1000
                    )
        except (asyncio.TimeoutError, GenerationError) as e:
            last_error = _failure(e, self.timeout_ms)

        logger.error("chunk %d gave up after %d attempts: %s", index, self.retry_attempts, last_error)
        return fallback_batch(
            chunk, FAILED_BATCH_NOTE.format(ATTEMPTS=self.retry_attempts, ERROR=last_error)
        )

    async def _call_cleaner(self, chunk: List[Row], key_field: str) -> List[CleanResult]:
        prompt = CLEANUP_USER_PROMPT.format(
            COUNT=len(chunk),
            KEY_FIELD=key_field,
            ROWS=json.dumps(chunk, default=str, ensure_ascii=False, indent=2),
        )
        messages = (
            ChatMessage(role="system", content=CLEANUP_SYSTEM_PROMPT),
            ChatMessage(role="user", content=prompt),
        )
        data = parse_json_object(
            await self.llm.complete(messages, temperature=0.1, max_output_tokens=2000, json_output=True)
        )
        items = data.get("results")
        if not isinstance(items, list):
            raise GenerationError("response has no 'results' array")
        if len(items) != len(chunk):
            raise GenerationError(f"expected {len(chunk)} results, got {len(items)}")
        return [merge_cleaned(row, item, key_field) for row, item in zip(chunk, items)]

    # ---- key field ----

    async def suggest_key_field(self, row: Row) -> str:
        if not row:
            return DEFAULT_KEY_FIELD
        messages = (
            ChatMessage(role="system", content=KEY_FIELD_SYSTEM_PROMPT),
            ChatMessage(role="user", content=KEY_FIELD_USER_PROMPT.format(ROW=json.dumps(row, default=str))),
        )
        try:
            text = await self.llm.complete(
                messages, temperature=0, max_output_tokens=10, timeout_s=self.timeout_ms / 1000
            )
        except GenerationError as e:
            logger.warning("key field suggestion failed: %s", e)
            return DEFAULT_KEY_FIELD
        name = text.strip().strip("`'\"").strip()
        if name in row:
            return name
        logger.info("suggested key field %r not in row; using %s", name, DEFAULT_KEY_FIELD)
        return DEFAULT_KEY_FIELD

    async def resolve_key_field(
        self,
        accessor: Optional[TableAccessor],
        sample: Optional[Row],
        explicit: Optional[str] = None,
    ) -> str:
        """Explicit name, then the table's primary key, then a model suggestion, then "id"."""
        if explicit:
            return explicit
        if accessor is not None:
            try:
                pk = await accessor.primary_key()
            except SQLAlchemyError as e:
                logger.warning("primary key lookup failed for %s: %s", accessor.name, describe_db_error(e))
                pk = None
            if pk:
                return pk
        if sample:
            return await self.suggest_key_field(sample)
        return DEFAULT_KEY_FIELD

    # ---- apply ----

    async def apply_cleanup(
        self,
        accessor: TableAccessor,
        results: Sequence[CleanResult],
        key_field: Optional[str] = None,
    ) -> ApplyResult:
        """
        Write back every safe change, one row at a time.
        Only changed columns are written; concurrent external writes are last-write-wins.
        """
        applicable = [r for r in results if r.is_applicable]
        key = await self.resolve_key_field(accessor, applicable[0].original if applicable else None, key_field)
        errors: List[str] = []
        updated = 0
        for r in applicable:
            if key not in r.original:
                errors.append(f"Row has no key field '{key}'; skipped")
                continue
            key_value = r.original[key]
            data = {f: r.cleaned[f] for f in r.changes if f in r.cleaned and f != key}
            try:
                matched = await accessor.update({key: key_value}, data)
            except (SQLAlchemyError, ValueError) as e:
                message = describe_db_error(e) if isinstance(e, SQLAlchemyError) else str(e)
                logger.warning("update failed for %s.%s=%s: %s", accessor.name, key, key_value, message)
                errors.append(f"Failed to update {accessor.name}.{key}={key_value}: {message}")
                continue
            if not matched:
                # key value changed or row deleted since it was read
                logger.warning("update matched no row for %s.%s=%s", accessor.name, key, key_value)
                errors.append(f"No row matched {accessor.name}.{key}={key_value}; nothing updated")
                continue
            updated += 1
        logger.info("applied cleanup to %s: updated=%d errors=%d", accessor.name, updated, len(errors))
        return ApplyResult(updatedCount=updated, errors=errors, keyField=key)
