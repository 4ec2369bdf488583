# datadesk/core/data_source_router.py
from __future__ import annotations
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Sequence, Tuple

from datadesk.core.gemini_client import GeminiClient, GenerationError
from datadesk.core.models import ChatMessage, RoutingDecision
from datadesk.prompts.versioned.v1.general import GENERAL_TEMPLATES
from datadesk.prompts.versioned.v1.router import ROUTER_SYSTEM_PROMPT, ROUTER_USER_PROMPT

logger = logging.getLogger(__name__)

VALID_TARGETS = {"entities", "dms", "general", "unknown"}
GENERAL_CONFIDENCE = 0.95
DMS_THRESHOLD = 0.8
ENTITIES_THRESHOLD = 0.85
FALLBACK_DMS_MIN = 0.5
FALLBACK_ENTITIES_MIN = 0.7

_PUNCT = re.compile(r"[^\w\s\-]")
_SPACES = re.compile(r"\s+")

GENERAL_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("greeting", re.compile(r"^(hi|hello|hey|yo|sup|greetings|good (morning|afternoon|evening))\b")),
    ("identity", re.compile(r"^(who are you|what are you|are you (an? )?(ai|bot|assistant|llm))\b")),
    ("capabilities", re.compile(r"^(what can you do|how can you help|what (are|is) your (abilities|capabilities|features))\b")),
    ("help", re.compile(r"^(help|help me|help me get started|assist me|guide me|instructions|manual|show me how to use this)$")),
    ("feedback", re.compile(r"^(thank you|thanks|appreciate|great job|well done)\b")),
    ("meta", re.compile(r"^(what is this( system)?|explain this|how does this work|purpose of this)\b")),
)


@dataclass(frozen=True)
class Signal:
    keyword: str
    weight: float
    tables: Tuple[str, ...]
    context: str
    pattern: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", re.compile(rf"\b{self.keyword}\b"))


@dataclass(frozen=True)
class SignalMatch:
    confidence: float = 0.0
    reason: str = ""
    tables: Tuple[str, ...] = ()
    trigger: str = ""


def _s(keyword: str, weight: float, tables: Sequence[str], context: str) -> Signal:
    return Signal(keyword, weight, tuple(tables), context)


DMS_SIGNALS: Tuple[Signal, ...] = (
    _s("ticket", 0.95, ["leads_tickets"], "explicit ticket reference"),
    _s(r"tk\d+", 0.95, ["leads_tickets"], "ticket ID format"),
    _s("note", 0.9, ["leads_notes"], "explicit note reference"),
    _s("task", 0.9, ["leads_tickets"], "explicit task reference"),
    _s("reminder", 0.9, ["reminders"], "explicit reminder reference"),
    _s("assigned to", 0.9, ["leads_tickets", "users"], "assignment context"),
    _s("deadline", 0.9, ["leads_tickets"], "deadline context"),
    _s("status", 0.85, ["leads_tickets"], "status context"),
    _s("tag", 0.85, ["leads_tags"], "tag context"),
    _s("lead", 0.85, ["leads_transactions"], "lead context"),
    _s("opportunity", 0.85, ["leads_transactions"], "opportunity context"),
    _s("transaction", 0.8, ["leads_transactions"], "transaction context"),
    _s("owned by", 0.8, ["leads_tickets", "users"], "ownership context"),
    _s("created by", 0.8, ["leads_notes", "users"], "authorship context"),
    _s("updated by", 0.8, ["leads_tickets", "users"], "update context"),
    _s("follow up", 0.75, ["leads_tickets"], "follow-up context"),
    _s("pending", 0.75, ["leads_tickets"], "pending status"),
    _s("overdue", 0.75, ["leads_tickets"], "overdue context"),
    _s("priority", 0.7, ["leads_tickets"], "priority context"),
    _s("escalate", 0.7, ["leads_tickets"], "escalation context"),
)

ENTITIES_SIGNALS: Tuple[Signal, ...] = (
    _s("entity", 0.98, ["entity"], "explicit entity reference"),
    _s("company", 0.95, ["entity"], "company context"),
    _s("organization", 0.95, ["entity"], "organization context"),
    _s("person", 0.95, ["people"], "person context"),
    _s("individual", 0.95, ["people"], "individual context"),
    _s("bank account", 0.95, ["bank_account"], "bank account context"),
    _s("iban", 0.95, ["bank_account"], "IBAN context"),
    _s("swift", 0.95, ["bank"], "SWIFT context"),
    _s("bic", 0.95, ["bank"], "BIC context"),
    _s("address", 0.95, ["address"], "address context"),
    _s("risk rating", 0.95, ["entity_risk_and_rates"], "risk rating context"),
    _s("credit limit", 0.95, ["entity_risk_and_rates"], "credit limit context"),
    _s("role", 0.9, ["entity_role", "role"], "role context"),
    _s("debtor", 0.9, ["entity_role", "role"], "debtor context"),
    _s("creditor", 0.9, ["entity_role", "role"], "creditor context"),
    _s("originator", 0.9, ["entity_role", "role"], "originator context"),
    _s("contact", 0.9, ["entity_contact", "people"], "contact context"),
    _s("email", 0.9, ["entity_property"], "email context"),
    _s("phone", 0.9, ["entity_property"], "phone context"),
    _s("website", 0.9, ["entity_property"], "website context"),
    _s("asset", 0.9, ["asset"], "asset context"),
    _s("property", 0.85, ["entity_property", "property"], "property context"),
    _s("country", 0.85, ["param_country", "address"], "country context"),
    _s("city", 0.85, ["address"], "city context"),
    _s("state", 0.85, ["address"], "state context"),
    _s("zipcode", 0.85, ["address"], "zipcode context"),
    _s("trade name", 0.85, ["entity"], "trade name context"),
    _s("legal name", 0.85, ["entity"], "legal name context"),
    _s("registration number", 0.85, ["global_organisations"], "registration context"),
    _s("client", 0.8, ["entity"], "client context"),
    _s("customer", 0.8, ["entity"], "customer context"),
    _s("vendor", 0.8, ["entity"], "vendor context"),
    _s("supplier", 0.8, ["entity"], "supplier context"),
    _s("partner", 0.8, ["entity"], "partner context"),
    _s("employee", 0.75, ["people"], "employee context"),
    _s("director", 0.75, ["people"], "director context"),
    _s("manager", 0.75, ["people"], "manager context"),
    _s("owner", 0.75, ["entity_mapping"], "ownership context"),
    _s("parent company", 0.75, ["entity_mapping"], "parent context"),
    _s("subsidiary", 0.75, ["entity_mapping"], "subsidiary context"),
    _s("currency", 0.7, ["bank_account"], "currency context"),
    _s("balance", 0.7, ["bank_account"], "balance context"),
)

DEFAULT_ENTITIES_TABLES = ("entity", "people", "address")
# no Entities keyword at all still leans to Entities, the primary system
DEFAULT_ENTITIES_MATCH = SignalMatch(
    0.75, "No specific signal detected, defaulting to Entities", DEFAULT_ENTITIES_TABLES, "default"
)


def normalize_question(q: str) -> str:
    """Lowercase, drop punctuation except hyphens, collapse whitespace."""
    return _SPACES.sub(" ", _PUNCT.sub(" ", (q or "").lower())).strip()


def match_general(normalized: str) -> Optional[Tuple[str, str]]:
    for category, pattern in GENERAL_PATTERNS:
        if pattern.search(normalized):
            return category, pattern.pattern
    return None


def score_signals(normalized: str, signals: Sequence[Signal]) -> SignalMatch:
    """Maximum-weight signal present in the question; ties keep the earlier entry."""
    best = SignalMatch()
    for sig in signals:
        if sig.weight > best.confidence and sig.pattern.search(normalized):
            best = SignalMatch(sig.weight, sig.context, sig.tables, sig.keyword)
    return best


def score_entities(normalized: str) -> SignalMatch:
    match = score_signals(normalized, ENTITIES_SIGNALS)
    return match if match.confidence > 0 else DEFAULT_ENTITIES_MATCH


def general_markdown(question: str, category: str) -> str:
    template = GENERAL_TEMPLATES.get(category)
    if template is None:
        return GENERAL_TEMPLATES["default"].replace("{QUESTION}", question)
    return template


def _clamp(v: float) -> float:
    return min(1.0, max(0.0, v))


def _str_list(v: Any) -> Optional[List[str]]:
    if isinstance(v, list):
        return [str(x) for x in v]
    return None


class DataSourceRouter:
    """
    Decides which data source answers a question.

    Cheap rules run first (conversational patterns, then DMS and Entities keyword
    signals); the model is only consulted for questions the rules cannot settle.
    Never raises: every input resolves to one of the four targets.
    """

    def __init__(self, llm: Optional[GeminiClient] = None, *, timeout_s: float = 20.0):
        self.llm = llm
        self.timeout_s = timeout_s

    async def route(self, question: str) -> RoutingDecision:
        t0 = time.perf_counter()
        original = (question or "").strip()
        normalized = normalize_question(original)
        if not normalized:
            return RoutingDecision(target="unknown", confidence=0.0, reason="Empty question received.")

        general = match_general(normalized)
        if general:
            category, pattern = general
            decision = RoutingDecision(
                target="general",
                confidence=GENERAL_CONFIDENCE,
                reason=f"Matched general pattern: {category}",
                markdownResponse=general_markdown(original, category),
                matched_pattern=pattern,
            )
            self._log("CLIENT", original, decision, t0)
            return decision

        dms = score_signals(normalized, DMS_SIGNALS)
        if dms.confidence >= DMS_THRESHOLD:
            decision = RoutingDecision(
                target="dms",
                confidence=dms.confidence,
                reason=f"Strong DMS signal: {dms.reason}",
                dms_tables=list(dms.tables),
                matched_pattern=dms.trigger,
            )
            self._log("CLIENT", original, decision, t0)
            return decision

        entities = score_entities(normalized)
        if entities.confidence >= ENTITIES_THRESHOLD:
            decision = RoutingDecision(
                target="entities",
                confidence=entities.confidence,
                reason=f"Strong Entities signal: {entities.reason}",
                entities_tables=list(entities.tables),
                matched_pattern=entities.trigger,
            )
            self._log("CLIENT", original, decision, t0)
            return decision

        if self.llm is not None:
            ai_decision = await self._ask_model(original)
            if ai_decision is not None:
                self._log("AI", original, ai_decision, t0)
                return ai_decision

        decision = self._fallback(dms, entities)
        self._log("FALLBACK", original, decision, t0)
        return decision

    def _fallback(self, dms: SignalMatch, entities: SignalMatch) -> RoutingDecision:
        if dms.confidence > entities.confidence:
            return RoutingDecision(
                target="dms",
                confidence=max(dms.confidence, FALLBACK_DMS_MIN),
                reason="Fallback: DMS signal stronger than Entities",
                dms_tables=list(dms.tables),
                matched_pattern=dms.trigger or None,
            )
        # Entities is the canonical system, so it wins ties
        return RoutingDecision(
            target="entities",
            confidence=max(entities.confidence, FALLBACK_ENTITIES_MIN),
            reason="Fallback: Entities signal stronger or default",
            entities_tables=list(entities.tables or DEFAULT_ENTITIES_TABLES),
            matched_pattern=entities.trigger or "default",
        )

    async def _ask_model(self, question: str) -> Optional[RoutingDecision]:
        messages = (
            ChatMessage(role="system", content=ROUTER_SYSTEM_PROMPT),
            ChatMessage(role="user", content=ROUTER_USER_PROMPT.format(QUESTION=question)),
        )
        try:
            data: Dict[str, Any] = await self.llm.complete_json(
                messages, temperature=0.1, max_output_tokens=600, timeout_s=self.timeout_s
            )
        except GenerationError as e:
            logger.warning("AI routing failed: %s", e)
            return None

        target = data.get("target")
        if target not in VALID_TARGETS:
            logger.warning("AI returned invalid routing target: %r", target)
            return None

        conf = data.get("confidence")
        confidence = _clamp(float(conf)) if isinstance(conf, (int, float)) and not isinstance(conf, bool) else 0.5
        markdown = data.get("markdownResponse") if isinstance(data.get("markdownResponse"), str) else None
        if target == "general" and not markdown:
            markdown = general_markdown(question, "ai_fallback")
        return RoutingDecision(
            target=target,
            confidence=confidence,
            reason=str(data.get("reason") or "AI decision"),
            markdownResponse=markdown,
            entities_tables=_str_list(data.get("entities_tables")),
            dms_tables=_str_list(data.get("dms_tables")),
            ai_used=True,
        )

    @staticmethod
    def _log(source: str, question: str, decision: RoutingDecision, t0: float) -> None:
        dt = int((time.perf_counter() - t0) * 1000)
        logger.info(
            "routing source=%s target=%s confidence=%.2f pattern=%s ai_used=%s duration_ms=%d question=%r",
            source, decision.target, decision.confidence, decision.matched_pattern,
            decision.ai_used, dt, question,
        )
