# datadesk/core/duplicates.py
from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from datadesk.core.gemini_client import GeminiClient, GenerationError
from datadesk.core.models import (
    ChatMessage,
    DeletionPlan,
    DuplicateAnalysis,
    DuplicateDecision,
    DuplicateGroupAnalysis,
    Row,
)
from datadesk.core.table_registry import TableAccessor
from datadesk.prompts.versioned.v1.duplicates import (
    DUPLICATES_SYSTEM_PROMPT,
    DUPLICATES_USER_PROMPT,
    ENTITY_SUMMARY,
)

logger = logging.getLogger(__name__)

# soft-deleted entities never count as duplicates
ACTIVE_ENTITY: Dict[str, Any] = {"is_deleted": 0, "deleted_at": None}
MAX_NAME_MATCHES = 500

PEOPLE = "people"
ADDRESSES = "address"
PROPERTIES = "entity_property"
CHILD_KEYS = {PEOPLE: "people_id", PROPERTIES: "entity_property_id", ADDRESSES: "address_id"}
FILL_FIELDS = ("trade_name", "computed_phones", "computed_emails", "computed_addresses", "creator_ledger_id")
_ADDRESS_IGNORED = {"address_id", "entity_id", "created_at", "updated_at", "deleted_at"}

_NON_DIGIT = re.compile(r"\D")
_SPACES = re.compile(r"\s+")


# ---- deterministic lookups ----

async def duplicate_names(
    entities: TableAccessor,
    entity_type: Optional[int] = None,
    skip: int = 0,
    take: int = 50,
) -> Tuple[List[Row], int]:
    """Names shared by more than one active entity, optionally within one entity type."""
    where = dict(ACTIVE_ENTITY)
    columns: Tuple[str, ...] = ("name",)
    if entity_type is not None:
        where["type"] = entity_type
        columns = ("name", "type")
    groups = await entities.duplicate_groups(columns, where, skip=skip, take=take)
    total = await entities.duplicate_group_count(columns, where)
    return groups, total


async def _entities_by_id(entities: TableAccessor, ids: Iterable[Any]) -> List[Row]:
    wanted = list(dict.fromkeys(i for i in ids if i is not None))
    if not wanted:
        return []
    return await entities.find_many(take=len(wanted), where={"entity_id": wanted})


async def entities_named(
    entities: TableAccessor,
    mappings: TableAccessor,
    name: str,
    entity_type: Optional[int] = None,
) -> Dict[str, List[Row]]:
    """
    Active entities with exactly this name, with the entities linked to them
    through entity_mapping: their parents and their children.
    """
    where: Dict[str, Any] = {"name": name, **ACTIVE_ENTITY}
    if entity_type is not None:
        where["type"] = entity_type
    found = await entities.find_many(take=MAX_NAME_MATCHES, where=where)
    ids = [e["entity_id"] for e in found if e.get("entity_id") is not None]
    if not ids:
        return {"entities": found, "parents": [], "children": []}

    up = await mappings.find_many(take=MAX_NAME_MATCHES, where={"entity_id": ids})
    down = await mappings.find_many(take=MAX_NAME_MATCHES, where={"parent_id": ids})
    return {
        "entities": found,
        "parents": await _entities_by_id(entities, (m.get("parent_id") for m in up)),
        "children": await _entities_by_id(entities, (m.get("entity_id") for m in down)),
    }


# ---- merging ----

def _filled(v: Any) -> bool:
    return v is not None and (not isinstance(v, str) or v.strip() != "")


def _norm(v: Any) -> str:
    return _SPACES.sub(" ", str(v).strip().lower()) if v is not None else ""


def normalize_phone(value: Any) -> str:
    return _NON_DIGIT.sub("", str(value or ""))


def split_full_name(full: str) -> Tuple[str, str]:
    parts = (full or "").split()
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return " ".join(parts[:-1]), parts[-1]


def _id_key(v: Any) -> Tuple[int, int, str]:
    s = str(v if v is not None else "")
    return (0, int(s), "") if s.isdigit() else (1, 0, s)


def merge_people(people: Sequence[Row]) -> Row:
    """
    Collapse several records of the same person into one.

    The most complete record wins (has a last name, then has a title, then the
    newest id); names, title and date of birth missing on it are filled from
    the others, and a full name sitting in first_name is split.
    """
    if not people:
        raise ValueError("no people to merge")
    ranked = sorted(
        people,
        key=lambda p: (_filled(p.get("last_name")), _filled(p.get("title")), _id_key(p.get("people_id"))),
    )
    winner = dict(ranked[-1])
    first = str(winner.get("first_name") or "").strip()
    last = str(winner.get("last_name") or "").strip()
    if not last and " " in first:
        first, last = split_full_name(first)

    for p in ranked[:-1]:
        if not last and _filled(p.get("last_name")):
            last = str(p["last_name"]).strip()
        if not first and _filled(p.get("first_name")):
            first = str(p["first_name"]).strip()
        for field in ("title", "date_of_birth"):
            if not _filled(winner.get(field)) and _filled(p.get(field)):
                winner[field] = p[field]

    if not last and " " in first:
        first, last = split_full_name(first)
    winner["first_name"] = first
    winner["last_name"] = last
    return winner


def merge_properties(properties: Sequence[Row]) -> List[Row]:
    """Drop repeated contact properties; phones compare by digits, everything else case-insensitively."""
    seen: Dict[Tuple[str, str], Row] = {}
    for p in properties:
        value = p.get("property_value")
        if not _filled(value):
            continue
        kind = str(p.get("property_id") or "")
        key = (kind, normalize_phone(value) if kind == "phone_number" else _norm(value))
        if key not in seen:
            seen[key] = dict(p)
        elif p.get("is_primary") == "Yes":
            seen[key]["is_primary"] = "Yes"
    return list(seen.values())


def merge_addresses(addresses: Sequence[Row]) -> List[Row]:
    """Drop addresses whose content columns match an earlier one after normalization."""
    seen: Dict[Tuple[Tuple[str, str], ...], Row] = {}
    for a in addresses:
        key = tuple(sorted((k, _norm(v)) for k, v in a.items() if k not in _ADDRESS_IGNORED))
        seen.setdefault(key, dict(a))
    return list(seen.values())


def merge_entities(kept: Row, removed: Sequence[Row]) -> Row:
    """The kept entity with its related records merged and its blank top-level fields filled from the removed ones."""
    group = [kept, *removed]
    merged = dict(kept)
    if any(PEOPLE in e for e in group):
        people = [p for e in group for p in e.get(PEOPLE) or []]
        merged[PEOPLE] = [merge_people(people)] if people else []
    if any(ADDRESSES in e for e in group):
        merged[ADDRESSES] = merge_addresses([a for e in group for a in e.get(ADDRESSES) or []])
    if any(PROPERTIES in e for e in group):
        merged[PROPERTIES] = merge_properties([p for e in group for p in e.get(PROPERTIES) or []])
    for field in FILL_FIELDS:
        if not _filled(merged.get(field)):
            donor = next((e[field] for e in removed if _filled(e.get(field))), None)
            if donor is not None:
                merged[field] = donor
    return merged


def deletion_plan(kept: Row, removed: Sequence[Row]) -> DeletionPlan:
    tables: Dict[str, List[Any]] = {
        PEOPLE: [p.get(CHILD_KEYS[PEOPLE]) for e in removed for p in e.get(PEOPLE) or []],
        "entity": [e.get("entity_id") for e in removed],
        PROPERTIES: [p.get(CHILD_KEYS[PROPERTIES]) for e in removed for p in e.get(PROPERTIES) or []],
        ADDRESSES: [a.get(CHILD_KEYS[ADDRESSES]) for e in removed for a in e.get(ADDRESSES) or []],
    }
    return DeletionPlan(
        retained_entity_id=kept.get("entity_id"),
        deleted_entity_ids=[e.get("entity_id") for e in removed],
        tables_to_cleanup={t: [i for i in ids if i is not None] for t, ids in tables.items() if any(i is not None for i in ids)},
    )


def group_by_name(entities: Sequence[Row]) -> List[List[Row]]:
    groups: Dict[str, List[Row]] = {}
    for e in entities:
        groups.setdefault(_norm(e.get("name")), []).append(e)
    return list(groups.values())


# ---- prompt ----

def _person(p: Row) -> str:
    first, last = split_full_name(" ".join(x for x in (p.get("first_name"), p.get("last_name")) if x))
    name = f"{first} {last}".strip()
    return f"{name} ({p['title']})" if _filled(p.get("title")) else name


def _property(p: Row) -> str:
    value = p.get("property_value")
    if p.get("property_id") == "phone_number":
        value = normalize_phone(value)
    elif p.get("property_id") == "email":
        value = str(value).strip().lower()
    else:
        value = str(value).strip()
    return f'{p.get("property_id")}="{value}" [primary={p.get("is_primary")}]'


def summarize_entity(e: Row, label: str) -> str:
    return ENTITY_SUMMARY.format(
        LABEL=label,
        ENTITY_ID=e.get("entity_id"),
        NAME=e.get("name"),
        PEOPLE="; ".join(_person(p) for p in e.get(PEOPLE) or []) or "none",
        PROPERTIES=", ".join(_property(p) for p in e.get(PROPERTIES) or [] if _filled(p.get("property_value"))) or "none",
        ADDRESS_COUNT=sum(1 for a in e.get(ADDRESSES) or [] if _filled(a.get("line_one"))),
        CREATED=json.dumps(e.get("created_at"), default=str),
    )


class EntityDuplicateAnalyzer:
    """
    Asks the model which of a group of same-named entities to keep, then builds
    the merged record and the deletion plan from that verdict. Nothing is written.

    Calls are time-boxed and retried like cleanup chunks; a group whose verdict
    never arrives, or names an entity outside the group, is left out of the result.
    """

    def __init__(
        self,
        llm: GeminiClient,
        *,
        retry_attempts: int = 3,
        retry_delay_base_ms: int = 1000,
        timeout_ms: int = 30_000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.llm = llm
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay_base_ms = retry_delay_base_ms
        self.timeout_ms = timeout_ms
        self._sleep = sleep

    async def analyze(self, entities: Sequence[Row]) -> DuplicateAnalysis:
        grouped: List[DuplicateGroupAnalysis] = []
        for group in group_by_name(entities):
            if len(group) < 2:
                continue
            result = await self.analyze_group(sorted(group, key=lambda e: _id_key(e.get("entity_id"))))
            if result is not None:
                grouped.append(result)
        logger.info("analyzed %d entities: %d duplicate groups resolved", len(entities), len(grouped))
        return DuplicateAnalysis(grouped=grouped, totalFound=len(entities), duplicateGroupsCount=len(grouped))

    async def analyze_group(self, group: Sequence[Row]) -> Optional[DuplicateGroupAnalysis]:
        primary, duplicates = group[0], list(group[1:])
        try:
            decision = await self.decide(primary, duplicates)
        except (asyncio.TimeoutError, GenerationError) as e:
            logger.error("duplicate decision for %r failed: %s", primary.get("name"), e)
            return None

        by_id = {str(e.get("entity_id")): e for e in group}
        kept = by_id.get(decision.keep)
        if kept is None:
            logger.warning("model kept entity %s, which is not in the group", decision.keep)
            return None
        removed = [by_id[i] for i in dict.fromkeys(decision.remove) if i in by_id and i != decision.keep]
        return DuplicateGroupAnalysis(
            aiDecision=decision,
            mergedEntity=merge_entities(kept, removed),
            deletionPlan=deletion_plan(kept, removed),
        )

    async def decide(self, primary: Row, duplicates: Sequence[Row]) -> DuplicateDecision:
        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "duplicate decision attempt %d/%d failed: %s",
                state.attempt_number, self.retry_attempts, state.outcome.exception(),
            )

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_delay_base_ms / 1000),
            retry=retry_if_exception_type((asyncio.TimeoutError, GenerationError)),
            before_sleep=log_retry,
            sleep=self._sleep,
        )
        async for attempt in retrying:
            with attempt:
                return await asyncio.wait_for(self._ask_model(primary, duplicates), timeout=self.timeout_ms / 1000)
        raise GenerationError("no attempt made")

    async def _ask_model(self, primary: Row, duplicates: Sequence[Row]) -> DuplicateDecision:
        prompt = DUPLICATES_USER_PROMPT.format(
            PRIMARY=summarize_entity(primary, "Primary Candidate"),
            DUPLICATES="\n".join(summarize_entity(d, f"Duplicate {i}") for i, d in enumerate(duplicates, 1)),
        )
        messages = (
            ChatMessage(role="system", content=DUPLICATES_SYSTEM_PROMPT),
            ChatMessage(role="user", content=prompt),
        )
        data = await self.llm.complete_json(messages, temperature=0.1, max_output_tokens=1000)
        try:
            return DuplicateDecision.model_validate(data)
        except ValidationError as e:
            raise GenerationError(f"invalid duplicate decision: {e.errors()[0]['msg']}") from e
