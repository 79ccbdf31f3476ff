"""
Agentic Extractor - multi-stage LLM extraction with validation.

Pipeline:
1. Document Analyzer: identify note structure
2. Primary Extractor: produce the candidate device order
3. Medical Validator: critique the candidate against the note
4. Confidence Assessor: score the combined result
5. Validate and self-correct (optional)

Stages run sequentially and always all four run: a stage whose model call
fails is recorded as a degraded step and the pipeline moves on. If the
orchestration itself breaks, the whole call is answered by the LLM
extractor instead.
"""
import logging
import time
from typing import Any, Dict, Optional

from dme_orders.agent.agents import (
    CONFIDENCE_ASSESSOR,
    DOCUMENT_ANALYZER,
    MEDICAL_VALIDATOR,
    PRIMARY_EXTRACTOR,
    AgentDefinition,
    build_agent_prompt,
    call_agent,
    fallback_stage_output,
    parse_failure_output,
    parse_stage_output,
)
from dme_orders.agent.trajectory import TrajectoryLogger
from dme_orders.agent.validation import OrderValidator
from dme_orders.config import Settings
from dme_orders.extraction.json_utils import has_order_fields, order_from_json, parse_json_object
from dme_orders.extraction.llm_extractor import LLMExtractor
from dme_orders.extraction.models import (
    AgenticExtractionResult,
    AgentStep,
    DeviceOrder,
    ExtractionContext,
    ExtractionMetadata,
    ExtractionMode,
    FallbackParserOutput,
    StageOutput,
)
from dme_orders.extraction.parser import DeterministicExtractor
from dme_orders.providers.llm.base import LLMProvider
from dme_orders.providers.llm.factory import LLMFactory

logger = logging.getLogger(__name__)

EXTRACTOR_VERSION = "AgenticExtractor_v1.0"
FALLBACK_VERSION = "FallbackParser"
FALLBACK_AGENT = "fallback_parser"
DEFAULT_CONFIDENCE = 0.8
FALLBACK_RESULT_CONFIDENCE = 0.5
THOROUGH_MIN_CORRECTIONS = 2


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _decode(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return parse_json_object(value)
        except ValueError:
            return None
    return None


def order_from_stage_outputs(outputs: StageOutput) -> Optional[DeviceOrder]:
    """
    Read the final order out of the primary extractor's output.

    Tries, in order: the `device_order` payload, `findings` decoded as JSON,
    then loose order keys the model put at the top level. Returns None when
    none of them looks like an order.
    """
    for candidate in (getattr(outputs, "device_order", None), outputs.findings):
        data = _decode(candidate)
        if data and has_order_fields(data):
            return order_from_json(data)

    if has_order_fields(outputs.extra):
        return order_from_json(outputs.extra)
    return None


def confidence_from_outputs(outputs: StageOutput) -> float:
    """Aggregate confidence from the assessor stage, clamped to [0, 1]."""
    value = getattr(outputs, "overall_confidence", None)
    if value is None:
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, value))


class AgenticExtractor:
    """
    Runs the four reasoning stages over a note and returns the order with
    per-stage reasoning, validation and timing.

    Usage:
        extractor = AgenticExtractor(settings)
        result = await extractor.extract_with_agents(note_text)
        print(result.device_order.device, result.confidence_score)
    """

    def __init__(
        self,
        settings: Settings,
        llm: Optional[LLMProvider] = None,
        fallback_extractor: Optional[LLMExtractor] = None,
        deterministic: Optional[DeterministicExtractor] = None,
    ):
        self.settings = settings
        self._llm = llm
        self._deterministic = deterministic or DeterministicExtractor()
        self._fallback_extractor = fallback_extractor or LLMExtractor(
            settings, llm=llm, fallback=self._deterministic
        )

    def _resolve_llm(self) -> Optional[LLMProvider]:
        if self._llm is None and self.settings.has_llm_credentials:
            try:
                self._llm = LLMFactory.create(self.settings)
            except ValueError as e:
                logger.warning("LLM provider unavailable, agents will run degraded: %s", e)
        return self._llm

    def default_context(self) -> ExtractionContext:
        return ExtractionContext(
            mode=self.settings.extraction_mode,
            require_validation=self.settings.require_validation,
        )

    async def extract_with_agents(
        self,
        note_text: str,
        context: Optional[ExtractionContext] = None,
    ) -> AgenticExtractionResult:
        """
        Extract a device order with the multi-stage pipeline.

        Never raises: stage failures degrade individual steps, and a failure
        of the pipeline as a whole yields the single-step fallback result.
        """
        started = time.perf_counter()
        if not isinstance(note_text, str):
            note_text = ""
        context = context or self.default_context()

        logger.info("Starting multi-agent extraction (mode=%s)", context.mode.value)
        try:
            return await self._run_pipeline(note_text, context, started)
        except Exception:
            logger.exception("Multi-agent extraction failed, falling back to simple parser")
            return await self._fallback_result(note_text, started)

    async def _run_pipeline(
        self,
        note_text: str,
        context: ExtractionContext,
        started: float,
    ) -> AgenticExtractionResult:
        llm = self._resolve_llm()
        trajectory = TrajectoryLogger(
            "AgenticExtractor",
            input_summary=f"{len(note_text)} characters, mode={context.mode.value}",
        )

        analysis = await self._execute_stage(DOCUMENT_ANALYZER, note_text, context, None, llm, trajectory)
        extraction = await self._execute_stage(
            PRIMARY_EXTRACTOR, note_text, context, analysis.outputs.as_context(), llm, trajectory
        )
        review = await self._execute_stage(
            MEDICAL_VALIDATOR, note_text, context, extraction.outputs.as_context(), llm, trajectory
        )
        combined = {**extraction.outputs.as_context(), **review.outputs.as_context()}
        assessment = await self._execute_stage(CONFIDENCE_ASSESSOR, note_text, context, combined, llm, trajectory)
        steps = [analysis, extraction, review, assessment]

        order = order_from_stage_outputs(extraction.outputs)
        if order is None:
            logger.info("Primary extractor gave no usable order, using deterministic parser")
            order = self._deterministic.extract(note_text)
        confidence = confidence_from_outputs(assessment.outputs)

        validation = None
        attempts = 0
        if context.require_validation and context.mode != ExtractionMode.FAST:
            validator = OrderValidator(self.settings, llm)
            outcome = await validator.validate_and_correct(
                order, note_text, self._correction_budget(context), trajectory
            )
            order, validation, attempts = outcome.order, outcome.validation, outcome.attempts
        else:
            reason = "fast mode" if context.mode == ExtractionMode.FAST else "validation not required"
            trajectory.skip_step("Validation", "validation_agent", reason)

        trajectory.complete(success=True, output_summary=f"device={order.device}")

        metadata = ExtractionMetadata(
            extractor_version=EXTRACTOR_VERSION,
            processing_duration_ms=_elapsed_ms(started),
            tokens_used=sum(step.outputs.tokens_used for step in steps),
            agents_used=[step.agent_name for step in steps],
            model=llm.get_model_name() if llm else None,
            additional_data={
                "extraction_mode": context.mode.value,
                "required_validation": context.require_validation,
                "validation_performed": validation is not None,
                "correction_attempts": attempts,
                "degraded_steps": sum(1 for step in steps if step.degraded),
                "source_file": context.source_file,
            },
        )

        return AgenticExtractionResult(
            device_order=order,
            confidence_score=confidence,
            reasoning_steps=steps,
            validation_result=validation,
            metadata=metadata,
            trajectory=trajectory.get_trajectory().to_dict(),
        )

    def _correction_budget(self, context: ExtractionContext) -> int:
        if not self.settings.enable_self_correction:
            return 0
        attempts = self.settings.max_correction_attempts
        if context.mode == ExtractionMode.THOROUGH:
            attempts = max(attempts, THOROUGH_MIN_CORRECTIONS)
        return attempts

    async def _execute_stage(
        self,
        agent: AgentDefinition,
        note_text: str,
        context: ExtractionContext,
        previous_outputs: Optional[Dict[str, Any]],
        llm: Optional[LLMProvider],
        trajectory: TrajectoryLogger,
    ) -> AgentStep:
        started = time.perf_counter()
        step = trajectory.start_step(agent.name, agent.key)
        logger.info("Executing agent: %s", agent.key)

        if llm is None:
            trajectory.degrade_step(step, "No LLM client configured")
            return self._stage_step(agent, fallback_stage_output(agent), started, degraded=True)

        try:
            prompt = build_agent_prompt(agent, note_text, context, previous_outputs)
            response = await call_agent(llm, self.settings, agent.key, prompt)
        except Exception as e:
            logger.warning("Agent %s execution failed: %s", agent.key, str(e) or type(e).__name__)
            trajectory.degrade_step(step, str(e) or type(e).__name__)
            return self._stage_step(agent, fallback_stage_output(agent), started, degraded=True)

        try:
            outputs, parsed = parse_stage_output(agent, response.text)
        except Exception as e:
            logger.warning("Agent %s response could not be read: %s", agent.key, str(e) or type(e).__name__)
            outputs, parsed = parse_failure_output(agent, response.text), False

        if response.usage is not None:
            outputs = outputs.model_copy(update={"tokens_used": response.usage.total_tokens})

        if parsed:
            trajectory.complete_step(step, outputs.reasoning[:200] or None, confidence=outputs.confidence)
        else:
            trajectory.degrade_step(step, "Response was not valid JSON")
        return self._stage_step(agent, outputs, started, degraded=not parsed)

    @staticmethod
    def _stage_step(agent: AgentDefinition, outputs: StageOutput, started: float, degraded: bool) -> AgentStep:
        return AgentStep(
            agent_name=agent.key,
            action=agent.role,
            reasoning=outputs.reasoning or "Agent reasoning not provided",
            confidence=outputs.confidence,
            outputs=outputs,
            duration_ms=_elapsed_ms(started),
            degraded=degraded,
        )

    async def _fallback_result(self, note_text: str, started: float) -> AgenticExtractionResult:
        order = await self._fallback_extractor.extract(note_text)
        outputs = FallbackParserOutput(
            reasoning="Multi-agent extraction failed; order produced by the fallback parser",
            confidence=FALLBACK_RESULT_CONFIDENCE,
        )
        step = AgentStep(
            agent_name=FALLBACK_AGENT,
            action="Extract device order without the agent pipeline",
            reasoning=outputs.reasoning,
            confidence=FALLBACK_RESULT_CONFIDENCE,
            outputs=outputs,
            duration_ms=_elapsed_ms(started),
            degraded=True,
        )
        return AgenticExtractionResult(
            device_order=order,
            confidence_score=FALLBACK_RESULT_CONFIDENCE,
            reasoning_steps=[step],
            metadata=ExtractionMetadata(
                extractor_version=FALLBACK_VERSION,
                processing_duration_ms=_elapsed_ms(started),
                agents_used=[FALLBACK_AGENT],
            ),
        )
