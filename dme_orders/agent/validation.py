"""
Validation and self-correction of extracted device orders.

Validation asks the model to grade an order against its source note and
falls back to a rule-based check. Self-correction feeds the issues back to
the model and adopts the corrected order only if it parses. Both are best
effort: on any failure the caller gets a usable result, never an exception.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dme_orders.agent.agents import call_agent
from dme_orders.agent.trajectory import TrajectoryLogger
from dme_orders.config import Settings
from dme_orders.extraction.json_utils import clean_string, has_order_fields, order_from_json, parse_json_object
from dme_orders.extraction.models import (
    UNKNOWN_DEVICE,
    DeviceOrder,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from dme_orders.providers.llm.base import LLMProvider

logger = logging.getLogger(__name__)

VALIDATION_AGENT = "validation_agent"
CORRECTION_AGENT = "correction_agent"

VALIDATION_PROMPT = '''
Validate this extracted device order against the original medical note:

Extracted Order:
{order_json}

Original Note:
{original_text}

Analyze for:
1. Medical accuracy and consistency
2. Completeness of critical fields
3. Logical consistency between fields
4. Compliance with medical standards

Return JSON with:
- is_valid: boolean
- validation_score: 0.0-1.0
- issues: array of validation issues, each with field, issue, severity (Info, Warning, Error, Critical) and suggested_fix
- field_confidences: per-field confidence scores
- suggestions: improvement recommendations

Return only valid JSON.'''

CORRECTION_PROMPT = '''
Fix the following device order based on validation issues:

Current Order:
{order_json}

Validation Issues:
{issues_json}

Original Note:
{original_text}

Return the corrected device order as JSON with the same structure as the input order.
Focus on fixing the identified issues while maintaining accuracy to the original note.

Return only valid JSON.'''


def basic_validation(order: DeviceOrder) -> ValidationResult:
    """Rule-based validation used when no model is available."""
    issues = []
    if not order.device or order.device == UNKNOWN_DEVICE:
        issues.append(ValidationIssue(
            field="Device",
            issue="Device type not identified",
            severity=ValidationSeverity.ERROR,
        ))
    if not order.patient_name:
        issues.append(ValidationIssue(
            field="PatientName",
            issue="Patient name missing",
            severity=ValidationSeverity.WARNING,
        ))

    return ValidationResult(
        is_valid=not any(issue.severity == ValidationSeverity.ERROR for issue in issues),
        validation_score=max(0.1, 1.0 - 0.2 * len(issues)),
        issues=issues,
    )


def _parse_severity(value: Any) -> ValidationSeverity:
    text = clean_string(value)
    if text:
        for severity in ValidationSeverity:
            if severity.value.lower() == text.lower():
                return severity
    return ValidationSeverity.WARNING


def _parse_issue(item: Any) -> Optional[ValidationIssue]:
    if isinstance(item, str):
        text = clean_string(item)
        return ValidationIssue(issue=text) if text else None
    if not isinstance(item, dict):
        return None
    return ValidationIssue(
        field=clean_string(item.get("field")) or "",
        issue=clean_string(item.get("issue")) or "",
        severity=_parse_severity(item.get("severity")),
        suggested_fix=clean_string(item.get("suggested_fix")),
    )


def _score(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.5
    return min(1.0, max(0.0, float(value)))


def parse_validation_response(response_text: str) -> ValidationResult:
    """
    Parse the validation agent's JSON.

    Raises:
        ValueError: If the response holds no JSON object
    """
    data = parse_json_object(response_text)

    issues: List[ValidationIssue] = []
    raw_issues = data.get("issues")
    if isinstance(raw_issues, list):
        for item in raw_issues:
            issue = _parse_issue(item)
            if issue is not None:
                issues.append(issue)

    field_confidences = {}
    raw_confidences = data.get("field_confidences")
    if isinstance(raw_confidences, dict):
        for key, value in raw_confidences.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                field_confidences[str(key)] = min(1.0, max(0.0, float(value)))

    suggestions = data.get("suggestions")
    if isinstance(suggestions, str):
        suggestions = [suggestions]
    if not isinstance(suggestions, list):
        suggestions = []

    return ValidationResult(
        is_valid=data.get("is_valid") is True,
        validation_score=_score(data.get("validation_score")),
        issues=issues,
        field_confidences=field_confidences,
        suggestions=[str(s) for s in suggestions if s],
    )


def _order_json(order: DeviceOrder) -> str:
    return json.dumps(order.model_dump(mode="json", exclude_none=True), indent=2)


def _correction_payload(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    The order inside a correction response: the object itself, or the first
    nested object (e.g. "corrected_order") that carries order fields.
    """
    if has_order_fields(data):
        return data
    for value in data.values():
        if has_order_fields(value):
            return value
    return None


@dataclass(frozen=True)
class CorrectionOutcome:
    """Final order of a validate/correct loop and the validation that judged it."""
    order: DeviceOrder
    validation: ValidationResult
    attempts: int = 0


class OrderValidator:
    """Validates orders and, when a model is available, corrects them."""

    def __init__(self, settings: Settings, llm: Optional[LLMProvider] = None):
        self.settings = settings
        self._llm = llm

    async def validate(self, order: DeviceOrder, original_text: str) -> ValidationResult:
        """Grade the order against the note; rule-based when the model is unavailable."""
        if self._llm is None:
            return basic_validation(order)

        prompt = VALIDATION_PROMPT.format(order_json=_order_json(order), original_text=original_text)
        try:
            response = await call_agent(self._llm, self.settings, VALIDATION_AGENT, prompt)
            return parse_validation_response(response.text)
        except Exception as e:
            logger.warning("Validation failed, using basic validation: %s", e)
            return basic_validation(order)

    async def self_correct(
        self,
        order: DeviceOrder,
        validation: ValidationResult,
        original_text: str,
    ) -> DeviceOrder:
        """
        Ask the model to fix the issues found in validation.

        A passing score, an empty issue list or a missing model return the
        order unchanged, as does any failure to call or parse and a
        response without order fields.
        """
        if (
            validation.validation_score >= self.settings.validation_threshold
            or not validation.issues
            or self._llm is None
        ):
            return order

        prompt = CORRECTION_PROMPT.format(
            order_json=_order_json(order),
            issues_json=json.dumps(
                [issue.model_dump(mode="json") for issue in validation.issues], indent=2
            ),
            original_text=original_text,
        )
        try:
            response = await call_agent(self._llm, self.settings, CORRECTION_AGENT, prompt)
            data = _correction_payload(parse_json_object(response.text))
        except Exception as e:
            logger.warning("Self-correction failed, keeping original order: %s", e)
            return order

        if data is None:
            logger.warning("Self-correction returned no order fields, keeping original order")
            return order
        corrected = order_from_json(data)

        logger.info("Self-correction completed for %d issue(s)", len(validation.issues))
        return corrected

    async def validate_and_correct(
        self,
        order: DeviceOrder,
        original_text: str,
        max_attempts: Optional[int] = None,
        trajectory: Optional[TrajectoryLogger] = None,
    ) -> CorrectionOutcome:
        """
        Validate, then correct and re-validate while the score stays below
        the threshold and attempts remain.

        Stops early when a correction returns the same order it was given.
        """
        if max_attempts is None:
            max_attempts = self.settings.max_correction_attempts

        validation = await self._logged_validation(order, original_text, trajectory)
        attempts = 0
        while (
            validation.validation_score < self.settings.validation_threshold
            and attempts < max_attempts
            and validation.issues
            and self._llm is not None
        ):
            attempts += 1
            logger.info(
                "Low validation score (%.2f), self-correction attempt %d of %d",
                validation.validation_score, attempts, max_attempts,
            )
            step = trajectory.start_step("Self-Correction", CORRECTION_AGENT) if trajectory else None
            corrected = await self.self_correct(order, validation, original_text)
            if corrected == order:
                if step:
                    trajectory.degrade_step(step, "Correction left the order unchanged")
                break
            if step:
                trajectory.complete_step(step, f"device={corrected.device}", attempt=attempts)
            order = corrected
            validation = await self._logged_validation(order, original_text, trajectory)

        return CorrectionOutcome(order=order, validation=validation, attempts=attempts)

    async def _logged_validation(
        self,
        order: DeviceOrder,
        original_text: str,
        trajectory: Optional[TrajectoryLogger],
    ) -> ValidationResult:
        step = trajectory.start_step("Validation", VALIDATION_AGENT) if trajectory else None
        validation = await self.validate(order, original_text)
        if step:
            trajectory.complete_step(
                step,
                f"score={validation.validation_score:.2f} issues={len(validation.issues)}",
                is_valid=validation.is_valid,
            )
        return validation
