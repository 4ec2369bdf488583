# datadesk/core/models.py
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Row = Dict[str, Any]


class DataSource(str, Enum):
    ENTITIES = "entities"
    DMS = "dms"


RoutingTarget = Literal["entities", "dms", "general", "unknown"]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class QueryPlan(BaseModel):
    sql: str
    explanation: str
    allowsLimit: bool = False
    limit: int = Field(default=0, ge=0)
    hasLimit: bool = False
    successStatus: bool = True
    shouldRetry: bool = False


class CorrectionFeedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    sql: str
    error: str


class RoutingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: RoutingTarget
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    markdownResponse: Optional[str] = None
    entities_tables: Optional[List[str]] = None
    dms_tables: Optional[List[str]] = None
    matched_pattern: Optional[str] = None
    ai_used: bool = False


class CleanResult(BaseModel):
    original: Row
    cleaned: Row
    changes: Dict[str, str] = Field(default_factory=dict)
    needsReview: bool = False
    isFailed: bool = False
    suggestions: Optional[str] = None

    @property
    def is_applicable(self) -> bool:
        return not self.needsReview and not self.isFailed and bool(self.changes)


class NaturalQueryResult(BaseModel):
    success: bool
    question: str
    dataSource: Optional[DataSource] = None
    routingConfidence: Optional[float] = None
    sql: str = ""
    explanation: str = ""
    results: List[Row] = Field(default_factory=list)
    tables: List[str] = Field(default_factory=list)
    correctionAttempts: int = 0
    errorFeedback: List[CorrectionFeedback] = Field(default_factory=list)


class DuplicateDecision(BaseModel):
    """Model verdict for one group of same-named entities; ids travel as strings."""

    keep: str
    remove: List[str] = Field(default_factory=list)
    needsReview: bool = False
    suggestions: Optional[str] = None
    changes: Dict[str, str] = Field(default_factory=dict)

    @field_validator("keep", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @field_validator("remove", mode="before")
    @classmethod
    def _ids_to_str(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(x) for x in v]
        return v


class DeletionPlan(BaseModel):
    retained_entity_id: Any
    deleted_entity_ids: List[Any] = Field(default_factory=list)
    # table -> primary keys to delete; empty tables are omitted
    tables_to_cleanup: Dict[str, List[Any]] = Field(default_factory=dict)


class DuplicateGroupAnalysis(BaseModel):
    aiDecision: DuplicateDecision
    mergedEntity: Row
    deletionPlan: DeletionPlan


class DuplicateAnalysis(BaseModel):
    grouped: List[DuplicateGroupAnalysis] = Field(default_factory=list)
    totalFound: int = 0
    duplicateGroupsCount: int = 0


class NameChange(BaseModel):
    key: Any
    field: str
    before: Optional[str] = None
    after: Optional[str] = None


class CapitalizeResult(BaseModel):
    keyField: str
    changes: List[NameChange] = Field(default_factory=list)
    updatedCount: int = 0
    errors: List[str] = Field(default_factory=list)


class ApplyResult(BaseModel):
    updatedCount: int = 0
    errors: List[str] = Field(default_factory=list)
    keyField: Optional[str] = None


# --- Request bodies ---

class NaturalQueryRequest(BaseModel):
    question: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1)


class CleanupRequest(BaseModel):
    db: DataSource
    table: str = Field(min_length=1)
    keyField: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=1000)
    dryRun: bool = True


class CleanupPreviewRequest(BaseModel):
    data: List[Row]
    # only used to label the UPDATE script
    table: str = "preview"
    keyField: Optional[str] = None


class CapitalizeNamesRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=1000)
    dryRun: bool = True
