import asyncio
import json
import math
from datetime import datetime, timezone

import pytest
from conftest import FakeAccessor, FakeLLM
from sqlalchemy.exc import OperationalError

from datadesk.core.cleanup import BatchCleanupOrchestrator, build_update_sql, estimate_bytes, merge_cleaned
from datadesk.core.gemini_client import GenerationError
from datadesk.core.models import CleanResult


def rows_in(messages):
    """Rows embedded in the cleaner prompt."""
    text = messages[-1].content
    return json.loads(text[text.index("RECORDS") + len("RECORDS"):])


def title_case_names(messages):
    results = []
    for row in rows_in(messages):
        cleaned = dict(row, name=row["name"].title())
        changes = {"name": "capitalized"} if cleaned["name"] != row["name"] else {}
        results.append({"cleaned": cleaned, "changes": changes, "needsReview": False})
    return json.dumps({"results": results})


def people(n):
    return [{"id": i, "name": f"person {i}", "email": f"p{i}@example.com"} for i in range(1, n + 1)]


class Sleeps:
    """Records backoff delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def sleep(self, seconds):
        self.delays.append(float(seconds))


def orchestrator(llm, **kw):
    kw.setdefault("sleep", Sleeps().sleep)
    return BatchCleanupOrchestrator(llm, **kw)


@pytest.mark.parametrize("n,max_bytes", [(1, 10), (10, 50), (10, 200), (25, 3000), (4, 10_000)])
def test_chunking_preserves_rows_and_order(n, max_bytes):
    rows = people(n)
    o = orchestrator(FakeLLM("{}"), max_bytes_per_chunk=max_bytes)
    chunks = o.chunk_rows(rows)
    assert len(chunks) == min(len(rows), max(1, math.ceil(estimate_bytes(rows) / max_bytes)))
    assert [r for c in chunks for r in c] == rows
    assert all(chunks)
    sizes = [len(c) for c in chunks]
    assert max(sizes) - min(sizes) <= 1


def test_empty_input(run):
    o = orchestrator(FakeLLM(GenerationError("unused")))
    assert o.chunk_rows([]) == []
    assert run(o.clean_batch([], "id")) == []


def test_clean_batch_merges_in_input_order(run):
    rows = people(9)
    llm = FakeLLM(title_case_names)
    o = orchestrator(llm, max_bytes_per_chunk=estimate_bytes(rows) // 3 + 1)
    results = run(o.clean_batch(rows, "id"))
    assert [r.original["id"] for r in results] == list(range(1, 10))
    assert all(r.cleaned["name"] == f"Person {r.original['id']}" for r in results)
    assert all(r.changes == {"name": "capitalized"} for r in results)
    assert len(llm.calls) == 3
    assert llm.calls[0]["temperature"] == 0.1
    assert llm.calls[0]["max_output_tokens"] == 2000


def test_timed_out_chunk_degrades_to_review(run):
    rows = people(7)

    async def slow_second_chunk(messages):
        if rows_in(messages)[0]["id"] == 4:
            await asyncio.sleep(5)
        return title_case_names(messages)

    llm = FakeLLM(slow_second_chunk)
    sleeps = Sleeps()
    o = orchestrator(
        llm,
        timeout_ms=50,
        max_bytes_per_chunk=estimate_bytes(rows) // 3 + 1,
        retry_delay_base_ms=1000,
        sleep=sleeps.sleep,
    )
    assert [len(c) for c in o.chunk_rows(rows)] == [3, 2, 2]

    results = run(o.clean_batch(rows, "id"))

    failed = [r.original["id"] for r in results if r.isFailed]
    assert failed == [4, 5]
    for r in results:
        if r.isFailed:
            assert r.needsReview is True
            assert r.changes == {}
            assert r.cleaned == r.original
            assert "timed out" in r.suggestions
        else:
            assert r.changes == {"name": "capitalized"}
    second_chunk_calls = [c for c in llm.calls if rows_in(c["messages"])[0]["id"] == 4]
    assert len(second_chunk_calls) == 3
    assert sleeps.delays == [1.0, 2.0]


def test_wrong_result_count_is_retried_then_fails(run):
    llm = FakeLLM(json.dumps({"results": []}))
    o = orchestrator(llm, retry_attempts=2)
    results = run(o.clean_batch(people(2), "id"))
    assert len(llm.calls) == 2
    assert all(r.isFailed for r in results)
    assert "expected 2 results, got 0" in results[0].suggestions


def test_concurrency_is_capped(run):
    rows = people(12)
    state = {"active": 0, "peak": 0}

    async def tracked(messages):
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1
        return title_case_names(messages)

    o = orchestrator(FakeLLM(tracked), max_concurrent=2, max_bytes_per_chunk=1)
    results = run(o.clean_batch(rows, "id"))
    assert len(results) == 12
    assert state["peak"] == 2


def test_merge_ignores_new_columns_and_flags_key_change():
    original = {"id": 1, "name": "jhon"}
    item = {"cleaned": {"id": 2, "name": "John", "injected": "x"}, "changes": {"name": "typo"}}
    result = merge_cleaned(original, item, "id")
    assert "injected" not in result.cleaned
    assert result.changes == {"id": "modified", "name": "typo"}
    assert result.needsReview is True
    assert "Key field 'id'" in result.suggestions


def test_merge_rejects_missing_cleaned():
    with pytest.raises(GenerationError):
        merge_cleaned({"id": 1}, {"changes": {}}, "id")


def test_apply_writes_only_safe_changed_columns(run):
    results = [
        CleanResult(original={"id": 1, "name": "a", "email": "A@X.COM"},
                    cleaned={"id": 1, "name": "a", "email": "a@x.com"}, changes={"email": "lowercase"}),
        CleanResult(original={"id": 2, "name": "b"}, cleaned={"id": 2, "name": "B?"},
                    changes={"name": "unsure"}, needsReview=True),
        CleanResult(original={"id": 3, "name": "c"}, cleaned={"id": 3, "name": "c"}),
        CleanResult(original={"id": 4, "name": "d"}, cleaned={"id": 4, "name": "d"},
                    needsReview=True, isFailed=True),
        CleanResult(original={"id": 5, "name": "e"}, cleaned={"id": 5, "name": "E"}, changes={"name": "capitalized"}),
    ]

    def fail_five(where):
        if where["id"] == 5:
            return OperationalError("UPDATE", {}, Exception(1205, "Lock wait timeout exceeded"))
        return None

    accessor = FakeAccessor(fail_on=fail_five)
    applied = run(orchestrator(FakeLLM("id")).apply_cleanup(accessor, results, "id"))
    assert accessor.updates == [({"id": 1}, {"email": "a@x.com"})]
    assert applied.updatedCount == 1
    assert applied.errors == ["Failed to update people.id=5: Lock wait timeout exceeded"]
    assert applied.keyField == "id"


def test_apply_reports_rows_the_update_did_not_match(run):
    results = [
        CleanResult(original={"id": 1, "name": "a"}, cleaned={"id": 1, "name": "A"}, changes={"name": "capitalized"}),
        CleanResult(original={"id": 2, "name": "b"}, cleaned={"id": 2, "name": "B"}, changes={"name": "capitalized"}),
    ]
    # row 2 was deleted after it was read
    accessor = FakeAccessor(missing=[2])
    applied = run(orchestrator(FakeLLM("id")).apply_cleanup(accessor, results, "id"))
    assert accessor.updates == [({"id": 1}, {"name": "A"})]
    assert applied.updatedCount == 1
    assert applied.errors == ["No row matched people.id=2; nothing updated"]


def test_key_field_resolution_order(run):
    row = {"user_id": 7, "name": "x"}

    o = orchestrator(FakeLLM(GenerationError("unused")))
    assert run(o.resolve_key_field(FakeAccessor(pk="uuid"), row, "explicit")) == "explicit"
    assert run(o.resolve_key_field(FakeAccessor(pk="uuid"), row)) == "uuid"

    o = orchestrator(FakeLLM("`user_id`\n"))
    assert run(o.resolve_key_field(FakeAccessor(pk=None), row)) == "user_id"

    lookup_failed = OperationalError("SHOW KEYS", {}, Exception(1146, "Table doesn't exist"))
    assert run(o.resolve_key_field(FakeAccessor(pk=lookup_failed), row)) == "user_id"

    assert run(orchestrator(FakeLLM("nonexistent")).suggest_key_field(row)) == "id"
    assert run(orchestrator(FakeLLM(GenerationError("down"))).suggest_key_field(row)) == "id"


def test_build_update_sql_preview():
    results = [
        CleanResult(original={"id": 3, "name": "o'brien"}, cleaned={"id": 3, "name": "O'Brien"},
                    changes={"name": "capitalized"}),
        CleanResult(original={"id": 4, "name": "?"}, cleaned={"id": 4, "name": "?"}, needsReview=True),
    ]
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    sql = build_update_sql("people", "id", results, now=now)
    assert sql.startswith("-- AUTO-CLEAN REPORT (2024-05-01T00:00:00+00:00)")
    assert "-- Rows Processed: 2" in sql
    assert "-- Safe Updates: 1" in sql
    assert "-- Requires Review: 1" in sql
    assert "UPDATE `people`\nSET\n  `name` = 'O''Brien'\nWHERE `id` = 3;" in sql
    assert sql.endswith("-- EXECUTE WITH CAUTION! Review changes before applying.")

    empty = build_update_sql("people", "id", results[1:], now=now)
    assert empty.endswith("-- No automatic updates recommended.")
