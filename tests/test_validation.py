"""
Validation and Self-Correction Tests

Covers:
1. Rule-based basic validation
2. LLM validation parsing and fallback
3. Self-correction no-op conditions and failure handling
4. The bounded validate/correct loop
"""
import pytest

from dme_orders.agent.trajectory import StepStatus, TrajectoryLogger
from dme_orders.agent.validation import OrderValidator, basic_validation, parse_validation_response
from dme_orders.extraction.models import (
    DeviceOrder,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)


LOW_SCORE = {
    "is_valid": False,
    "validation_score": 0.4,
    "issues": [{"field": "patient_name", "issue": "Patient name missing", "severity": "Warning"}],
}
HIGH_SCORE = {"is_valid": True, "validation_score": 0.95, "issues": []}

FAILING = ValidationResult(
    is_valid=False,
    validation_score=0.4,
    issues=[ValidationIssue(field="Device", issue="Device type not identified",
                            severity=ValidationSeverity.ERROR)],
)


class TestBasicValidation:
    """Test the rule-based validator."""

    def test_unknown_device_and_missing_patient(self):
        result = basic_validation(DeviceOrder())
        assert result.is_valid is False
        assert result.validation_score == pytest.approx(0.6)
        assert [(i.field, i.severity) for i in result.issues] == [
            ("Device", ValidationSeverity.ERROR),
            ("PatientName", ValidationSeverity.WARNING),
        ]

    def test_missing_patient_is_only_warning(self):
        result = basic_validation(DeviceOrder(device="CPAP"))
        assert result.is_valid is True
        assert result.validation_score == pytest.approx(0.8)

    def test_complete_order(self):
        result = basic_validation(DeviceOrder(device="CPAP", patient_name="Jane Doe"))
        assert result.is_valid is True
        assert result.validation_score == pytest.approx(1.0)
        assert result.issues == []


class TestLLMValidation:
    """Test model-backed validation."""

    def test_parse_response(self):
        result = parse_validation_response(
            '```json\n{"is_valid": false, "validation_score": 0.55, '
            '"issues": [{"field": "liters", "issue": "Flow rate missing", "severity": "error", '
            '"suggested_fix": "Add flow"}, "Usage unclear", 7], '
            '"field_confidences": {"device": 0.9, "liters": "low"}, "suggestions": "Recheck"}\n```'
        )
        assert result.is_valid is False
        assert result.validation_score == pytest.approx(0.55)
        assert result.issues[0].severity == ValidationSeverity.ERROR
        assert result.issues[0].suggested_fix == "Add flow"
        assert result.issues[1].issue == "Usage unclear"
        assert result.issues[1].severity == ValidationSeverity.WARNING
        assert len(result.issues) == 2
        assert result.field_confidences == {"device": 0.9}
        assert result.suggestions == ["Recheck"]

    def test_parse_clamps_score(self):
        assert parse_validation_response('{"validation_score": 3}').validation_score == 1.0
        assert parse_validation_response('{"validation_score": "high"}').validation_score == 0.5

    @pytest.mark.asyncio
    async def test_validate_uses_llm(self, settings, make_llm):
        llm = make_llm(HIGH_SCORE)
        result = await OrderValidator(settings, llm).validate(DeviceOrder(device="CPAP"), "CPAP note")
        assert result.validation_score == pytest.approx(0.95)
        kwargs = llm.generate.await_args.kwargs
        assert kwargs["system_prompt"] == "You are a validation_agent specialized in medical device extraction."

    @pytest.mark.asyncio
    async def test_validate_falls_back_to_basic(self, settings, make_llm):
        order = DeviceOrder()
        for llm in (make_llm(RuntimeError("boom")), make_llm("not json")):
            result = await OrderValidator(settings, llm).validate(order, "note")
            assert result == basic_validation(order)

    @pytest.mark.asyncio
    async def test_validate_without_llm(self, settings):
        order = DeviceOrder(device="Walker")
        assert await OrderValidator(settings).validate(order, "walker") == basic_validation(order)


class TestSelfCorrection:
    """Test best-effort self-correction."""

    @pytest.mark.asyncio
    async def test_passing_order_is_unchanged(self, settings, make_llm):
        """Self-correcting an order that already passes is a no-op."""
        llm = make_llm({"device": "Something else"})
        order = DeviceOrder(device="CPAP", patient_name="Jane Doe")
        passing = ValidationResult(
            is_valid=True,
            validation_score=0.7,
            issues=[ValidationIssue(field="usage", issue="minor")],
        )

        corrected = await OrderValidator(settings, llm).self_correct(order, passing, "note")

        assert corrected is order
        llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_issues_is_unchanged(self, settings, make_llm):
        llm = make_llm({"device": "CPAP"})
        order = DeviceOrder()
        result = ValidationResult(is_valid=False, validation_score=0.2, issues=[])
        assert await OrderValidator(settings, llm).self_correct(order, result, "note") is order
        llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_llm_is_unchanged(self, settings):
        order = DeviceOrder()
        assert await OrderValidator(settings).self_correct(order, FAILING, "note") is order

    @pytest.mark.asyncio
    async def test_adopts_correction(self, settings, make_llm):
        llm = make_llm({"device": "CPAP", "ordering_provider": "Cameron"})
        corrected = await OrderValidator(settings, llm).self_correct(DeviceOrder(), FAILING, "CPAP note")
        assert corrected.device == "CPAP"
        assert corrected.ordering_provider == "Dr. Cameron"
        prompt = llm.generate.await_args.args[0]
        assert "Device type not identified" in prompt
        assert "CPAP note" in prompt

    @pytest.mark.asyncio
    async def test_wrapped_correction_is_unwrapped(self, settings, make_llm):
        llm = make_llm({"corrected_order": {"device": "CPAP", "mask_type": "nasal"}})
        corrected = await OrderValidator(settings, llm).self_correct(DeviceOrder(), FAILING, "note")
        assert corrected.device == "CPAP"
        assert corrected.mask_type == "nasal"

    @pytest.mark.asyncio
    async def test_response_without_order_keeps_original(self, settings, make_llm):
        """A JSON answer that holds no order never replaces the current one."""
        order = DeviceOrder(device="CPAP", mask_type="full face")
        llm = make_llm({"status": "fixed", "notes": "Order looks complete"})

        corrected = await OrderValidator(settings, llm).self_correct(order, FAILING, "note")

        assert corrected is order
        assert corrected.device == "CPAP"

    @pytest.mark.asyncio
    async def test_failures_keep_original(self, settings, make_llm):
        order = DeviceOrder(device="Walker")
        for llm in (make_llm(TimeoutError()), make_llm("```not json```")):
            assert await OrderValidator(settings, llm).self_correct(order, FAILING, "note") is order


class TestCorrectionLoop:
    """Test the validate/correct loop and its attempt bound."""

    @pytest.mark.asyncio
    async def test_honors_max_attempts(self, settings, make_llm):
        llm = make_llm(
            LOW_SCORE, {"device": "CPAP"},
            LOW_SCORE, {"device": "CPAP", "mask_type": "nasal"},
            LOW_SCORE,
        )
        trajectory = TrajectoryLogger("test")

        outcome = await OrderValidator(settings, llm).validate_and_correct(
            DeviceOrder(), "CPAP note", max_attempts=2, trajectory=trajectory
        )

        assert outcome.attempts == 2
        assert outcome.order.mask_type == "nasal"
        assert llm.generate.await_count == 5
        components = [s.component for s in trajectory.get_trajectory().steps]
        assert components == [
            "validation_agent", "correction_agent",
            "validation_agent", "correction_agent",
            "validation_agent",
        ]

    @pytest.mark.asyncio
    async def test_defaults_to_configured_attempts(self, settings, make_llm):
        assert settings.max_correction_attempts == 1
        llm = make_llm(LOW_SCORE, {"device": "CPAP"}, LOW_SCORE)
        outcome = await OrderValidator(settings, llm).validate_and_correct(DeviceOrder(), "note")
        assert outcome.attempts == 1
        assert llm.generate.await_count == 3

    @pytest.mark.asyncio
    async def test_stops_when_correction_changes_nothing(self, settings, make_llm):
        order = DeviceOrder(device="CPAP")
        llm = make_llm(LOW_SCORE, {"device": "CPAP"})
        trajectory = TrajectoryLogger("test")

        outcome = await OrderValidator(settings, llm).validate_and_correct(
            order, "note", max_attempts=3, trajectory=trajectory
        )

        assert outcome.attempts == 1
        assert outcome.order == order
        assert llm.generate.await_count == 2
        assert trajectory.get_trajectory().steps[-1].status == StepStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_passing_validation_skips_correction(self, settings, make_llm):
        llm = make_llm(HIGH_SCORE)
        outcome = await OrderValidator(settings, llm).validate_and_correct(DeviceOrder(device="CPAP"), "note")
        assert outcome.attempts == 0
        assert outcome.validation.validation_score == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_zero_attempts_only_validates(self, settings, make_llm):
        llm = make_llm(LOW_SCORE)
        outcome = await OrderValidator(settings, llm).validate_and_correct(DeviceOrder(), "note", max_attempts=0)
        assert outcome.attempts == 0
        assert llm.generate.await_count == 1
