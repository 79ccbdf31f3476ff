"""
Device order extraction: data model, pattern library and deterministic parser.

The LLM extractor lives in `dme_orders.extraction.llm_extractor` and is
imported from there directly.
"""
from dme_orders.extraction.models import (
    UNKNOWN_DEVICE,
    UNKNOWN_PROVIDER,
    AgenticExtractionResult,
    AgentStep,
    DeviceOrder,
    ExtractionContext,
    ExtractionMetadata,
    ExtractionMode,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from dme_orders.extraction.parser import DeterministicExtractor
from dme_orders.extraction.patterns import classify_device, normalize_provider

__all__ = [
    "UNKNOWN_DEVICE",
    "UNKNOWN_PROVIDER",
    "AgenticExtractionResult",
    "AgentStep",
    "DeviceOrder",
    "ExtractionContext",
    "ExtractionMetadata",
    "ExtractionMode",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "DeterministicExtractor",
    "classify_device",
    "normalize_provider",
]
