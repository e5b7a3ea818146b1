from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EligibilityReason(str, Enum):
    URL_FIELD = "URL_FIELD"
    TECHNICAL_FIELD = "TECHNICAL_FIELD"
    TEMPLATE_SYNTAX = "TEMPLATE_SYNTAX"
    NUMERIC_OR_COLOR = "NUMERIC_OR_COLOR"
    BRAND_NAME = "BRAND_NAME"
    SCHEMA_FLAGGED = "SCHEMA_FLAGGED"
    EMPTY_OR_NON_TEXT = "EMPTY_OR_NON_TEXT"
    PATTERN_MISMATCH = "PATTERN_MISMATCH"


class Strategy(str, Enum):
    SIMPLE = "simple"
    ENHANCED = "enhanced"
    LONG_TEXT = "long_text"


class Fallback(str, Enum):
    NONE = "none"
    PLACEHOLDER_ERROR = "placeholder_error"
    BRAND_SKIP = "brand_skip"


class QualityCategory(str, Enum):
    QUALITY = "QUALITY"
    COMPLETENESS = "COMPLETENESS"
    VALIDATION = "VALIDATION"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class PipelineStage(str, Enum):
    FILTERING = "filtering"
    RESERVING = "reserving"
    PROTECTING = "protecting"
    CHUNKING = "chunking"
    TRANSLATING = "translating"
    RESTORING = "restoring"
    VALIDATING = "validating"
    CONFIRMING = "confirming"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class ResourceContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_type: str | None = None
    field_type: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None

    def is_empty(self) -> bool:
        return not any((self.section_type, self.field_type, self.resource_type, self.resource_id))

    def merged(self, other: "ResourceContext | None") -> "ResourceContext":
        if other is None:
            return self
        updates = {k: v for k, v in other.model_dump().items() if v is not None}
        return self.model_copy(update=updates)


class TranslationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    shop_id: str
    field_path: str
    source_text: Any = None
    source_locale: str = "en"
    target_locale: str
    resource_context: ResourceContext = Field(default_factory=ResourceContext)
    requested_by: str | None = None


class EligibilityVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    should_translate: bool
    reason: EligibilityReason | None = None


class FieldEvaluation(BaseModel):
    key: str
    value: Any = None
    verdict: EligibilityVerdict
    context: ResourceContext


class MaskedText(BaseModel):
    text: str
    token_map: dict[str, str] = Field(default_factory=dict)


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    text: str
    is_html_like: bool = False


class PromptContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: Strategy
    system_prompt: str
    source_locale: str | None = None
    terminology: tuple[str, ...] = ()
    previous_translation: str | None = None


class TranslationAttempt(BaseModel):
    strategy: Strategy
    success: bool
    text: str
    duration_ms: int = 0
    fallback: Fallback = Fallback.NONE
    is_original: bool = False
    chunk_index: int = 0
    attempts: int = 0
    error: str | None = None


class QualityRecord(BaseModel):
    category: QualityCategory
    code: str
    message: str
    severity: int
    retryable: bool
    context: dict[str, Any] = Field(default_factory=dict)


class QualityVerdict(BaseModel):
    is_valid: bool
    records: list[QualityRecord] = Field(default_factory=list)

    @property
    def retryable(self) -> bool:
        return not self.is_valid and any(r.retryable and r.severity >= 2 for r in self.records)


class CreditReservation(BaseModel):
    id: str
    shop_id: str
    reserved_credits: int
    status: ReservationStatus
    created_at: datetime
    expires_at: datetime
    actual_credits: int | None = None
    settled_at: datetime | None = None


class UsageRecord(BaseModel):
    shop_id: str
    reservation_id: str | None = None
    resource_id: str | None = None
    resource_type: str | None = None
    source_language: str | None = None
    target_language: str | None = None
    estimated_credits: int
    credits_used: int
    credits_diff: int
    diff_percentage: float
    usage_date: datetime
    status: str = "completed"


class ConfirmResult(BaseModel):
    used: int
    released: int


class CreditBalance(BaseModel):
    shop_id: str
    balance_credits: int
    reserved_credits: int
    used_credits: int
    available_credits: int


class TranslationResult(BaseModel):
    field_path: str
    success: bool
    text: Any = None
    is_original: bool = False
    fallback: Fallback | None = None
    reason: str | None = None
    quality_issues: list[QualityRecord] = Field(default_factory=list)
    credits_used: int = 0
    stage: PipelineStage = PipelineStage.DONE


class BatchTranslationRequest(BaseModel):
    shop_id: str
    requests: list[TranslationRequest]


class AdminGrantRequest(BaseModel):
    shop_id: str
    credits: int
    note: str = "manual grant"
    external_ref: str | None = None
