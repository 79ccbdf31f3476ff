"""
Pydantic models for DME device order extraction.

DeviceOrder is the canonical output of every extraction strategy. The
remaining models describe the agentic pipeline: per-call context, the
typed output of each reasoning stage, validation results and the
aggregate AgenticExtractionResult.

All models are frozen; partial updates go through model_copy(update=...).
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator

UNKNOWN_DEVICE = "Unknown"
UNKNOWN_PROVIDER = "Dr. Unknown"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class ExtractionMode(str, Enum):
    """Processing depth for the agentic pipeline."""
    FAST = "Fast"
    STANDARD = "Standard"
    THOROUGH = "Thorough"


class ValidationSeverity(str, Enum):
    """Severity of a validation issue."""
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    CRITICAL = "Critical"


# ============================================================================
# Device Order
# ============================================================================

class DeviceOrder(BaseModel):
    """
    Structured DME order extracted from a physician note.

    `device` and `ordering_provider` always carry a value ("Unknown" and
    "Dr. Unknown" sentinels). Every other field is either present and
    non-empty or None.
    """
    device: str = Field(default=UNKNOWN_DEVICE, description="Normalized device category (CPAP, Oxygen Tank, ...)")
    ordering_provider: str = Field(default=UNKNOWN_PROVIDER, description="Prescribing physician, 'Dr.'-prefixed")
    patient_name: Optional[str] = Field(None, description="Patient full name")
    dob: Optional[str] = Field(None, description="Patient date of birth as written")
    diagnosis: Optional[str] = Field(None, description="Diagnosis justifying the order")
    mask_type: Optional[str] = Field(None, description="CPAP/BiPAP mask style (e.g., 'full face')")
    liters: Optional[str] = Field(None, description="Oxygen flow rate (e.g., '2 L')")
    usage: Optional[str] = Field(None, description="Usage schedule (e.g., 'sleep and exertion')")
    qualifier: Optional[str] = Field(None, description="Severity qualifier (e.g., 'AHI > 20')")
    add_ons: Optional[Tuple[str, ...]] = Field(None, description="Accessories (e.g., humidifier)")
    specifications: Optional[Dict[str, Any]] = Field(None, description="Device-specific attributes")

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("device", mode="before")
    @classmethod
    def _default_device(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return UNKNOWN_DEVICE if value is None else value

    @field_validator("ordering_provider", mode="before")
    @classmethod
    def _default_provider(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return UNKNOWN_PROVIDER if value is None else value

    @field_validator(
        "patient_name", "dob", "diagnosis", "mask_type", "liters", "usage", "qualifier",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("add_ons", mode="before")
    @classmethod
    def _normalize_add_ons(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        items = []
        for item in value:
            item = _blank_to_none(item)
            if item is not None and item not in items:
                items.append(item)
        return tuple(items) or None

    @field_validator("specifications", mode="before")
    @classmethod
    def _normalize_specifications(cls, value: Any) -> Any:
        if not value:
            return None
        return value

    @property
    def is_unknown(self) -> bool:
        return self.device == UNKNOWN_DEVICE

    def to_api_payload(self) -> Dict[str, Any]:
        """Serialize to the snake_case payload used downstream, omitting absent fields."""
        return self.model_dump(mode="json", exclude_none=True)


# ============================================================================
# Agentic Pipeline Models
# ============================================================================

class ExtractionContext(BaseModel):
    """Per-call configuration for the agentic pipeline."""
    source_file: str = ""
    document_type: str = "physician_note"
    mode: ExtractionMode = ExtractionMode.STANDARD
    require_validation: bool = True
    hints: Dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ValidationIssue(BaseModel):
    """A single problem found when checking an order against its source note."""
    field: str = ""
    issue: str = ""
    severity: ValidationSeverity = ValidationSeverity.WARNING
    suggested_fix: Optional[str] = None

    model_config = {"frozen": True}


class ValidationResult(BaseModel):
    """Outcome of a validation pass."""
    is_valid: bool = False
    validation_score: float = Field(0.5, ge=0.0, le=1.0)
    issues: List[ValidationIssue] = Field(default_factory=list)
    field_confidences: Dict[str, float] = Field(default_factory=dict)
    suggestions: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def error_count(self) -> int:
        return sum(
            1 for issue in self.issues
            if issue.severity in (ValidationSeverity.ERROR, ValidationSeverity.CRITICAL)
        )


class StageOutput(BaseModel):
    """
    Fields every reasoning stage is asked to return.

    Keys the model returns that no stage declares are kept in `extra`.
    """
    reasoning: str = ""
    confidence: float = Field(0.8, ge=0.0, le=1.0)
    findings: Any = None
    recommendations: Any = None
    tokens_used: int = 0
    extra: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def as_context(self) -> Dict[str, Any]:
        """Flatten into the dict shown to later stages as prior output."""
        data = self.model_dump(mode="json", exclude={"stage", "extra"}, exclude_none=True)
        data.update(self.extra)
        return data


class DocumentAnalysisOutput(StageOutput):
    stage: Literal["document_analyzer"] = "document_analyzer"
    document_structure: Any = None
    key_sections: Any = None
    data_quality: Any = None


class PrimaryExtractionOutput(StageOutput):
    stage: Literal["primary_extractor"] = "primary_extractor"
    device_order: Any = None
    extraction_certainty: Any = None
    missing_fields: Any = None


class MedicalValidationOutput(StageOutput):
    stage: Literal["medical_validator"] = "medical_validator"
    validation_issues: Any = None
    completeness_score: Optional[float] = None
    medical_flags: Any = None


class ConfidenceAssessmentOutput(StageOutput):
    stage: Literal["confidence_assessor"] = "confidence_assessor"
    overall_confidence: Optional[float] = None
    field_confidences: Any = None
    uncertainty_areas: Any = None


class FallbackParserOutput(StageOutput):
    stage: Literal["fallback_parser"] = "fallback_parser"


AgentOutput = Union[
    DocumentAnalysisOutput,
    PrimaryExtractionOutput,
    MedicalValidationOutput,
    ConfidenceAssessmentOutput,
    FallbackParserOutput,
]


class AgentStep(BaseModel):
    """Record of one reasoning stage. Created once, never mutated."""
    agent_name: str
    action: str
    reasoning: str = ""
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    outputs: AgentOutput = Field(..., discriminator="stage")
    duration_ms: float = 0.0
    degraded: bool = False

    model_config = {"frozen": True}


class ExtractionMetadata(BaseModel):
    """Bookkeeping about an agentic extraction call."""
    extractor_version: str = ""
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processing_duration_ms: float = 0.0
    tokens_used: int = 0
    agents_used: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AgenticExtractionResult(BaseModel):
    """Output of the agentic pipeline for a single note."""
    device_order: DeviceOrder = Field(default_factory=DeviceOrder)
    confidence_score: float = Field(0.0, ge=0.0, le=1.0)
    reasoning_steps: List[AgentStep] = Field(default_factory=list)
    validation_result: Optional[ValidationResult] = None
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)
    trajectory: Optional[Dict[str, Any]] = None

    model_config = {"frozen": True}
