"""
Reasoning stages of the agentic pipeline.

Four specialized agents run in a fixed order. Each gets the note, the call
context and the previous stage's output, and answers with one JSON object
that is parsed into that stage's output model.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type

from dme_orders.config import Settings
from dme_orders.extraction.json_utils import parse_json_object
from dme_orders.extraction.models import (
    ConfidenceAssessmentOutput,
    DocumentAnalysisOutput,
    ExtractionContext,
    MedicalValidationOutput,
    PrimaryExtractionOutput,
    StageOutput,
)
from dme_orders.providers.llm.base import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

FALLBACK_REASONING = "Fallback execution - no AI analysis performed"
FALLBACK_FINDINGS = "Limited analysis available without AI"
FALLBACK_CONFIDENCE = 0.5

PARSE_FAILURE_REASONING = "Response parsing failed"
PARSE_FAILURE_CONFIDENCE = 0.3

DEFAULT_STAGE_CONFIDENCE = 0.8


@dataclass(frozen=True)
class AgentDefinition:
    """Role and prompt material for one reasoning stage."""
    key: str
    name: str
    role: str
    instructions: str
    output_fields: str
    output_model: Type[StageOutput]


DOCUMENT_ANALYZER = AgentDefinition(
    key="document_analyzer",
    name="Document Analysis Agent",
    role="Analyze document structure and identify key sections",
    instructions=(
        "Analyze the medical note structure, identify sections containing device "
        "information, patient data, and clinical context. Return structured analysis."
    ),
    output_fields='''- document_structure: Analysis of document sections
- key_sections: Important sections identified
- data_quality: Assessment of data completeness''',
    output_model=DocumentAnalysisOutput,
)

PRIMARY_EXTRACTOR = AgentDefinition(
    key="primary_extractor",
    name="Primary Extraction Agent",
    role="Extract device order information with medical context",
    instructions='''Extract detailed device order information from the medical note. Return a JSON object with this exact structure:

{
  "device_order": {
    "device": "[device type like CPAP, Oxygen Tank, etc.]",
    "ordering_provider": "[doctor name]",
    "patient_name": "[patient name if mentioned]",
    "dob": "[date of birth if mentioned]",
    "diagnosis": "[medical condition/justification]",
    "mask_type": "[for CPAP devices]",
    "liters": "[for oxygen devices]",
    "usage": "[when/how used]",
    "qualifier": "[medical qualifier such as AHI > 20]",
    "add_ons": ["list", "of", "accessories", "like", "humidifier"]
  }
}

CRITICAL: Always include add_ons array for ANY accessories mentioned (humidifiers, side rails, etc.). If no add-ons mentioned, use empty array [].''',
    output_fields='''- device_order: Complete device order extraction in JSON format with fields: device, patient_name, dob, diagnosis, ordering_provider, liters, usage, mask_type, qualifier, add_ons
- extraction_certainty: Per-field certainty scores
- missing_fields: Fields that couldn't be extracted''',
    output_model=PrimaryExtractionOutput,
)

MEDICAL_VALIDATOR = AgentDefinition(
    key="medical_validator",
    name="Medical Validation Agent",
    role="Validate medical accuracy and completeness",
    instructions=(
        "Validate the extracted information for medical accuracy, completeness, "
        "and consistency with standard medical practices."
    ),
    output_fields='''- validation_issues: List of medical accuracy concerns
- completeness_score: How complete is the extraction (0.0-1.0)
- medical_flags: Any medical red flags''',
    output_model=MedicalValidationOutput,
)

CONFIDENCE_ASSESSOR = AgentDefinition(
    key="confidence_assessor",
    name="Confidence Assessment Agent",
    role="Assess extraction confidence and identify uncertainties",
    instructions=(
        "Evaluate the confidence level of each extracted field and overall "
        "extraction quality. Identify areas of uncertainty."
    ),
    output_fields='''- overall_confidence: Overall extraction confidence (0.0-1.0)
- field_confidences: Per-field confidence scores
- uncertainty_areas: Areas needing attention''',
    output_model=ConfidenceAssessmentOutput,
)

# Execution order is fixed: each stage reads the output of the one before.
AGENTS: Tuple[AgentDefinition, ...] = (
    DOCUMENT_ANALYZER,
    PRIMARY_EXTRACTOR,
    MEDICAL_VALIDATOR,
    CONFIDENCE_ASSESSOR,
)

AGENT_PROMPT = '''
{instructions}

Context:
- Document Type: {document_type}
- Processing Mode: {mode}
- Source File: {source_file}
{hints}
{previous}
Medical Note:
{note_text}

Return your analysis as a JSON object with these fields:
- reasoning: Your step-by-step analysis
- confidence: Confidence score (0.0-1.0)
- findings: Key findings relevant to your role
- recommendations: Recommendations for next steps
- tokens_used: Approximate tokens used
{output_fields}

Return only valid JSON.'''


def build_agent_prompt(
    agent: AgentDefinition,
    note_text: str,
    context: ExtractionContext,
    previous_outputs: Optional[Dict[str, Any]] = None,
) -> str:
    """Assemble the prompt for one stage."""
    previous = ""
    if previous_outputs:
        previous = "Previous Agent Outputs:\n" + json.dumps(previous_outputs, indent=2, default=str) + "\n"

    hints = "".join(f"- {key}: {value}\n" for key, value in sorted(context.hints.items()))

    return AGENT_PROMPT.format(
        instructions=agent.instructions,
        document_type=context.document_type,
        mode=context.mode.value,
        source_file=context.source_file or "(not provided)",
        hints=hints,
        previous=previous,
        note_text=note_text,
        output_fields=agent.output_fields,
    )


async def call_agent(llm: LLMProvider, settings: Settings, agent_key: str, prompt: str) -> LLMResponse:
    """
    One bounded LLM call on behalf of an agent.

    Raises:
        asyncio.TimeoutError: If the call exceeds the configured timeout
        Exception: Whatever the provider raises once its retries are spent
    """
    return await asyncio.wait_for(
        llm.generate(
            prompt,
            system_prompt=f"You are a {agent_key} specialized in medical device extraction.",
            max_tokens=settings.llm_max_tokens,
            temperature=settings.agent_temperature,
        ),
        timeout=settings.llm_timeout_seconds,
    )


def _unit_interval(value: Any, default: Optional[float]) -> Optional[float]:
    """Read a 0-1 score from model output, clamping out-of-range numbers."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if number != number:  # NaN
        return default
    return min(1.0, max(0.0, number))


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError, OverflowError):
        return 0


def stage_output_from_json(model: Type[StageOutput], data: Dict[str, Any]) -> StageOutput:
    """Split a decoded response into declared fields and leftover keys."""
    declared = set(model.model_fields) - {"stage", "extra"}
    fields: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in data.items():
        if key in declared:
            fields[key] = value
        else:
            extra[key] = value

    reasoning = fields.get("reasoning")
    if reasoning is None:
        fields["reasoning"] = ""
    elif not isinstance(reasoning, str):
        fields["reasoning"] = json.dumps(reasoning, default=str)

    fields["confidence"] = _unit_interval(fields.get("confidence"), DEFAULT_STAGE_CONFIDENCE)
    fields["tokens_used"] = _as_int(fields.get("tokens_used"))
    for score_field in ("completeness_score", "overall_confidence"):
        if score_field in fields:
            fields[score_field] = _unit_interval(fields[score_field], None)

    return model(**fields, extra=extra)


def parse_stage_output(agent: AgentDefinition, response_text: str) -> Tuple[StageOutput, bool]:
    """
    Parse a stage's response.

    Returns:
        (output, parsed). An unparseable response yields a low-confidence
        output that keeps the raw text in `findings`, and parsed=False.
    """
    try:
        data = parse_json_object(response_text)
    except ValueError:
        logger.warning("Failed to parse agent response as JSON for %s", agent.key)
        return parse_failure_output(agent, response_text), False
    return stage_output_from_json(agent.output_model, data), True


def fallback_stage_output(agent: AgentDefinition) -> StageOutput:
    """Output recorded for a stage that could not call the model."""
    return agent.output_model(
        reasoning=FALLBACK_REASONING,
        confidence=FALLBACK_CONFIDENCE,
        findings=FALLBACK_FINDINGS,
        tokens_used=0,
    )


def parse_failure_output(agent: AgentDefinition, response_text: str) -> StageOutput:
    """Low-confidence output for a response that could not be read; keeps the raw text."""
    return agent.output_model(
        reasoning=PARSE_FAILURE_REASONING,
        confidence=PARSE_FAILURE_CONFIDENCE,
        findings=response_text,
        tokens_used=0,
    )
