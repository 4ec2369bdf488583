# datadesk/core/correction_loop.py
from __future__ import annotations
import logging
from typing import List, Optional

from datadesk.core.models import CorrectionFeedback, NaturalQueryResult, QueryPlan
from datadesk.core.query_planner import QueryPlanGenerator
from datadesk.core.read_only_db_executor import QueryExecutionError, ReadOnlyDbExecutor
from datadesk.core.sql_analysis import tables_referenced
from datadesk.core.sql_guard import MAX_LIMIT, SqlValidationError, apply_limit, has_limit_placeholder

logger = logging.getLogger(__name__)


def resolve_limit(plan: QueryPlan, limit: Optional[int], max_limit: int = MAX_LIMIT) -> int:
    """Caller limit when the plan accepts one, else the plan's own LIMIT (even 0), else the cap."""
    if limit and plan.allowsLimit:
        n = limit
    elif plan.hasLimit or plan.limit > 0:
        n = plan.limit
    else:
        n = max_limit
    return max(0, min(int(n), max_limit))


def executable_sql(plan: QueryPlan, limit: Optional[int], max_limit: int = MAX_LIMIT) -> str:
    if has_limit_placeholder(plan.sql):
        return apply_limit(plan.sql, resolve_limit(plan, limit, max_limit), max_limit)
    return plan.sql


class CorrectionLoop:
    """
    Plan -> execute -> on failure re-plan with the accumulated error feedback.

    At most `max_correction_attempts` re-plans, so at most that plus one executions.
    The feedback list only grows; every re-plan sees all previous failures oldest-first.
    """

    def __init__(self, max_correction_attempts: int = 2, max_limit: int = MAX_LIMIT):
        self.max_correction_attempts = max(0, int(max_correction_attempts))
        self.max_limit = max_limit

    async def execute(
        self,
        question: str,
        planner: QueryPlanGenerator,
        executor: ReadOnlyDbExecutor,
        limit: Optional[int] = None,
    ) -> NaturalQueryResult:
        feedback: List[CorrectionFeedback] = []
        plan = await planner.generate_query_plan(question)
        sql = plan.sql
        corrections = 0

        while True:
            if not plan.successStatus:
                logger.info("plan unanswerable after %d corrections: %s", corrections, plan.explanation)
                return self._result(False, question, sql, plan, [], feedback, corrections)

            sql = executable_sql(plan, limit, self.max_limit)
            try:
                rows = await executor.fetch_all(sql)
            except (QueryExecutionError, SqlValidationError) as e:
                error = e.message if isinstance(e, QueryExecutionError) else str(e)
                feedback.append(CorrectionFeedback(sql=sql, error=error))
                logger.warning("execution %d failed: %s", len(feedback), error)
                if corrections >= self.max_correction_attempts:
                    logger.error("giving up after %d corrections", corrections)
                    return self._result(False, question, sql, plan, [], feedback, corrections)
                corrections += 1
                plan = await planner.generate_query_plan(question, corrections=tuple(feedback))
                continue

            logger.info("query succeeded rows=%d corrections=%d", len(rows), corrections)
            return self._result(True, question, sql, plan, rows, feedback, corrections)

    @staticmethod
    def _result(
        success: bool,
        question: str,
        sql: str,
        plan: QueryPlan,
        rows: list,
        feedback: List[CorrectionFeedback],
        corrections: int,
    ) -> NaturalQueryResult:
        return NaturalQueryResult(
            success=success,
            question=question,
            sql=sql,
            explanation=plan.explanation,
            results=rows,
            tables=tables_referenced(sql) if success else [],
            correctionAttempts=corrections,
            errorFeedback=list(feedback),
        )
