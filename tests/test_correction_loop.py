from typing import List

import pytest
from sqlalchemy.exc import OperationalError

from datadesk.core.correction_loop import CorrectionLoop, executable_sql, resolve_limit
from datadesk.core.models import QueryPlan
from datadesk.core.read_only_db_executor import QueryExecutionError, describe_db_error
from datadesk.core.sql_guard import sanitize_sql


class FakePlanner:
    def __init__(self, *plans: QueryPlan):
        self.plans = list(plans)
        self.seen: List[tuple] = []

    async def generate_query_plan(self, question, corrections=()):
        self.seen.append(tuple(corrections))
        return self.plans.pop(0) if len(self.plans) > 1 else self.plans[0]


class FakeExecutor:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.executed: List[str] = []

    async def fetch_all(self, sql):
        self.executed.append(sql)
        out = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(out, Exception):
            raise out
        return out


def plan(sql="SELECT * FROM users LIMIT ?", **kw):
    return QueryPlan(sql=sql, explanation="users", **kw)


def test_success_on_first_execution(run):
    executor = FakeExecutor([{"id": 1}])
    result = run(CorrectionLoop().execute("users?", FakePlanner(plan()), executor))
    assert result.success is True
    assert executor.executed == ["SELECT * FROM users LIMIT 100"]
    assert result.results == [{"id": 1}]
    assert result.tables == ["users"]
    assert result.errorFeedback == []
    assert result.correctionAttempts == 0


def test_failures_feed_back_and_stop_after_max(run):
    planner = FakePlanner(plan("SELECT a FROM users"), plan("SELECT b FROM users"), plan("SELECT c FROM users"))
    executor = FakeExecutor(QueryExecutionError("Unknown column"))
    result = run(CorrectionLoop(max_correction_attempts=2).execute("q", planner, executor))
    assert result.success is False
    assert len(executor.executed) == 3
    assert len(result.errorFeedback) == 3
    assert result.correctionAttempts == 2
    assert result.sql == "SELECT c FROM users"
    # each re-plan sees every earlier failure, oldest first
    assert [len(c) for c in planner.seen] == [0, 1, 2]
    assert planner.seen[2][0].sql == "SELECT a FROM users"


def test_correction_recovers(run):
    planner = FakePlanner(plan("SELECT nme FROM users"), plan("SELECT name FROM users"))
    executor = FakeExecutor(QueryExecutionError("Unknown column 'nme'"), [{"name": "Ann"}])
    result = run(CorrectionLoop().execute("names", planner, executor))
    assert result.success is True
    assert result.correctionAttempts == 1
    assert result.errorFeedback[0].error == "Unknown column 'nme'"
    assert result.sql == "SELECT name FROM users"


def test_unanswerable_replan_stops_without_execution(run):
    planner = FakePlanner(plan("SELECT x FROM users"), plan("SELECT 'no' AS message", successStatus=False))
    executor = FakeExecutor(QueryExecutionError("boom"))
    result = run(CorrectionLoop().execute("q", planner, executor))
    assert result.success is False
    assert len(executor.executed) == 1
    assert len(result.errorFeedback) == 1


def test_initial_unanswerable_plan_never_executes(run):
    executor = FakeExecutor([])
    result = run(CorrectionLoop().execute("q", FakePlanner(plan(successStatus=False)), executor))
    assert result.success is False
    assert executor.executed == []
    assert result.errorFeedback == []


@pytest.mark.parametrize("allows,detected,caller,expected", [
    (True, 0, 25, 25),
    (True, 0, 500, 100),
    (False, 500, 25, 100),
    (False, 10, None, 10),
    (True, 7, None, 7),
    (False, 0, None, 100),
])
def test_resolve_limit(allows, detected, caller, expected):
    p = plan(allowsLimit=allows, limit=detected)
    assert resolve_limit(p, caller) == expected


def test_explicit_limit_zero_is_honored():
    assert resolve_limit(plan(limit=0, hasLimit=True), None) == 0
    assert resolve_limit(plan(limit=0, hasLimit=True, allowsLimit=True), 5) == 5


def test_offset_limit_clamps_row_count(run):
    sanitized = sanitize_sql("SELECT * FROM entity LIMIT 0, 500")
    p = plan(sql=sanitized.sql, limit=sanitized.limit, hasLimit=sanitized.has_limit)
    assert executable_sql(p, None) == "SELECT * FROM entity LIMIT 0, 100"

    executor = FakeExecutor([])
    p = plan(sql=sanitized.sql, limit=sanitized.limit, hasLimit=True, allowsLimit=True)
    run(CorrectionLoop().execute("q", FakePlanner(p), executor, limit=5))
    assert executor.executed == ["SELECT * FROM entity LIMIT 0, 5"]


def test_caller_limit_applied_to_sql(run):
    executor = FakeExecutor([])
    run(CorrectionLoop().execute("q", FakePlanner(plan(allowsLimit=True)), executor, limit=5))
    assert executor.executed == ["SELECT * FROM users LIMIT 5"]


def test_describe_db_error_prefers_driver_message():
    err = OperationalError("SELECT nme FROM users", {}, Exception(1054, "Unknown column 'nme' in 'field list'"))
    assert describe_db_error(err) == "Unknown column 'nme' in 'field list'"
    assert describe_db_error(ValueError("first line\nsecond line")) == "first line"
