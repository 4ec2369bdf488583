# datadesk/core/query_planner.py
from __future__ import annotations
import logging
from typing import Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from datadesk.core.gemini_client import GeminiClient, GenerationError, parse_json_object
from datadesk.core.models import ChatMessage, CorrectionFeedback, DataSource, QueryPlan
from datadesk.core.sql_guard import SqlValidationError, sanitize_sql
from datadesk.prompts.versioned.v1.planner import (
    CORRECTION_ITEM,
    CORRECTIONS_BLOCK,
    PLAN_USER_PROMPT,
    REJECTED_FEEDBACK,
)

logger = logging.getLogger(__name__)

NO_QUERY_SQL = "SELECT 'No valid query could be generated.' AS message"

Conversation = Tuple[ChatMessage, ...]


class _RawPlan(BaseModel):
    """Shape the model must return; strict so "true" or 1 do not pass as booleans."""
    model_config = ConfigDict(extra="ignore")

    sql: StrictStr = Field(min_length=1)
    explanation: StrictStr
    allowsLimit: StrictBool
    successStatus: StrictBool
    shouldRetry: StrictBool = False


def fallback_plan(reason: str) -> QueryPlan:
    return QueryPlan(
        sql=NO_QUERY_SQL,
        explanation=f"I cannot perform that action. {reason}",
        allowsLimit=False,
        limit=0,
        successStatus=False,
        shouldRetry=False,
    )


def build_user_prompt(question: str, corrections: Sequence[CorrectionFeedback] = ()) -> str:
    block = ""
    if corrections:
        items = "".join(
            CORRECTION_ITEM.format(N=i, SQL=c.sql, ERROR=c.error)
            for i, c in enumerate(corrections, 1)
        )
        block = CORRECTIONS_BLOCK.format(ATTEMPTS=items)
    return PLAN_USER_PROMPT.format(QUESTION=question, CORRECTIONS=block)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        parts = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "response"
            parts.append(f"{loc}: {err.get('msg')}")
        return "Missing or invalid fields (" + "; ".join(parts) + ")"
    return str(exc)


class QueryPlanGenerator:
    """
    Turns a question into a sanitized QueryPlan for one data source.

    Internal retries only cover malformed model output (bad JSON, wrong field types,
    SQL rejected by the sanitizer). Execution failures are handled by the correction loop,
    which calls back in with the accumulated `corrections`.
    """

    def __init__(
        self,
        llm: GeminiClient,
        system_prompt: str,
        *,
        source: DataSource,
        max_retries: int = 3,
        temperature: float = 0.2,
        max_output_tokens: int = 600,
        timeout_s: Optional[float] = 30.0,
    ):
        self.llm = llm
        self.system_prompt = system_prompt
        self.source = source
        self.max_retries = max(1, int(max_retries))
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s

    async def generate_query_plan(
        self,
        question: str,
        corrections: Sequence[CorrectionFeedback] = (),
    ) -> QueryPlan:
        conversation: Conversation = (
            ChatMessage(role="system", content=self.system_prompt),
            ChatMessage(role="user", content=build_user_prompt(question, corrections)),
        )
        last_error = "no response"
        for attempt in range(1, self.max_retries + 1):
            reply: Optional[str] = None
            try:
                reply = await self.llm.complete(
                    conversation,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                    json_output=True,
                    timeout_s=self.timeout_s,
                )
                plan = self._to_plan(reply)
            except (GenerationError, ValidationError, SqlValidationError) as e:
                last_error = _describe(e)
                logger.warning(
                    "[%s] plan attempt %d/%d rejected: %s",
                    self.source.value, attempt, self.max_retries, last_error,
                )
                conversation = self._with_feedback(conversation, reply, last_error)
                continue

            if not plan.successStatus:
                logger.info("[%s] model declared question unanswerable: %s", self.source.value, plan.explanation)
            return plan

        logger.error("[%s] no valid plan after %d attempts: %s", self.source.value, self.max_retries, last_error)
        return fallback_plan(
            f"Failed after {self.max_retries} attempts: {last_error}. Please rephrase your question."
        )

    @staticmethod
    def _to_plan(reply: str) -> QueryPlan:
        raw = _RawPlan.model_validate(parse_json_object(reply))
        sanitized = sanitize_sql(raw.sql)
        return QueryPlan(
            sql=sanitized.sql,
            explanation=raw.explanation.strip(),
            allowsLimit=raw.allowsLimit,
            limit=sanitized.limit,
            hasLimit=sanitized.has_limit,
            successStatus=raw.successStatus,
            # a plan that reaches the caller is final either way
            shouldRetry=False,
        )

    @staticmethod
    def _with_feedback(conversation: Conversation, reply: Optional[str], reason: str) -> Conversation:
        extra: Tuple[ChatMessage, ...] = ()
        if reply:
            extra += (ChatMessage(role="assistant", content=reply),)
        extra += (ChatMessage(role="user", content=REJECTED_FEEDBACK.format(REASON=reason)),)
        return conversation + extra
