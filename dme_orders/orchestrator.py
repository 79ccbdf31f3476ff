"""
Extraction Orchestrator - picks and runs an extraction strategy per note.

Strategies are tried in order and the first success wins:
1. Agentic pipeline (when agentic mode is on)
2. Single-call LLM extractor (when a model is configured)
3. Deterministic parser (always; never fails)

The orchestrator holds only the frozen settings and the shared, read-only
LLM provider, so concurrent calls do not interfere with each other.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from dme_orders.agent.pipeline import AgenticExtractor
from dme_orders.agent.tools.base import Tool, ToolResult
from dme_orders.config import Settings
from dme_orders.extraction.llm_extractor import LLMExtractor
from dme_orders.extraction.models import AgenticExtractionResult, DeviceOrder, ExtractionContext
from dme_orders.extraction.parser import DeterministicExtractor
from dme_orders.providers.llm.base import LLMProvider
from dme_orders.providers.llm.factory import LLMFactory

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


@dataclass
class OrchestratedExtraction:
    """Result of one orchestrated extraction."""
    order: DeviceOrder
    strategy: str
    confidence: Optional[float] = None
    agentic_result: Optional[AgenticExtractionResult] = None
    attempted: List[str] = field(default_factory=list)


class DeterministicStrategy(Tool):
    """Regex extraction. Last in every chain."""

    def __init__(self, extractor: DeterministicExtractor):
        self._extractor = extractor

    @property
    def name(self) -> str:
        return "deterministic"

    @property
    def description(self) -> str:
        return "Pattern-library extraction with no network access."

    async def execute(self, input_data: str) -> ToolResult:
        return ToolResult.ok(self._extractor.extract(input_data))


class AgenticStrategy(Tool):
    """Four-stage agent pipeline, bound to the context of one call."""

    def __init__(self, extractor: AgenticExtractor, context: ExtractionContext):
        self._extractor = extractor
        self._context = context

    @property
    def name(self) -> str:
        return "agentic"

    @property
    def description(self) -> str:
        return "Multi-agent extraction with validation and self-correction."

    async def execute(self, input_data: str) -> ToolResult:
        result = await self._extractor.extract_with_agents(input_data, self._context)
        return ToolResult.ok(
            result.device_order,
            confidence=result.confidence_score,
            agentic_result=result,
        )


class ExtractionOrchestrator:
    """
    Entry point of the extraction core.

    Usage:
        orchestrator = ExtractionOrchestrator(Settings())
        order = await orchestrator.extract(note_text)
    """

    def __init__(self, settings: Settings, llm: Optional[LLMProvider] = None):
        self.settings = settings
        if llm is None and settings.has_llm_credentials:
            try:
                llm = LLMFactory.create(settings)
            except ValueError as e:
                logger.warning("LLM provider unavailable, using deterministic extraction: %s", e)
        self._llm = llm

        self._deterministic = DeterministicExtractor()
        self._llm_extractor = LLMExtractor(settings, llm=llm, fallback=self._deterministic)
        self._agentic = AgenticExtractor(
            settings,
            llm=llm,
            fallback_extractor=self._llm_extractor,
            deterministic=self._deterministic,
        )

    @property
    def has_llm(self) -> bool:
        return self._llm is not None

    def default_context(self, source_file: str = "") -> ExtractionContext:
        """Per-call context built from settings."""
        return ExtractionContext(
            source_file=source_file,
            mode=self.settings.extraction_mode,
            require_validation=self.settings.require_validation,
        )

    def strategies(self, context: ExtractionContext) -> List[Tool]:
        """The ordered strategy chain for one call."""
        chain: List[Tool] = []
        if self.settings.use_agentic_mode:
            chain.append(AgenticStrategy(self._agentic, context))
        if self.has_llm:
            chain.append(self._llm_extractor)
        chain.append(DeterministicStrategy(self._deterministic))
        return chain

    async def extract_detailed(
        self,
        note_text: str,
        context: Optional[ExtractionContext] = None,
    ) -> OrchestratedExtraction:
        """Run the strategy chain and report which strategy produced the order."""
        if not isinstance(note_text, str):
            note_text = ""
        context = context or self.default_context()

        attempted: List[str] = []
        for strategy in self.strategies(context):
            attempted.append(strategy.name)
            result = await strategy.run(note_text)
            if result.success:
                return OrchestratedExtraction(
                    order=result.data,
                    strategy=strategy.name,
                    confidence=result.metadata.get("confidence"),
                    agentic_result=result.metadata.get("agentic_result"),
                    attempted=attempted,
                )
            logger.warning("Extraction strategy %s failed: %s", strategy.name, result.error)

        logger.error("Every extraction strategy failed; returning an empty order")
        return OrchestratedExtraction(order=DeviceOrder(), strategy="none", attempted=attempted)

    async def extract(self, note_text: str, context: Optional[ExtractionContext] = None) -> DeviceOrder:
        """Extract a device order. Never raises."""
        outcome = await self.extract_detailed(note_text, context)
        return outcome.order

    async def extract_agentic(
        self,
        note_text: str,
        context: Optional[ExtractionContext] = None,
    ) -> AgenticExtractionResult:
        """Run the agent pipeline directly, whatever the configured mode."""
        return await self._agentic.extract_with_agents(note_text, context or self.default_context())

    def extract_sync(self, note_text: str) -> DeviceOrder:
        """Deterministic extraction without an event loop."""
        return self._deterministic.extract(note_text)

    async def extract_many(
        self,
        notes: Sequence[str],
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> List[DeviceOrder]:
        """Extract a batch concurrently, at most `concurrency` calls at a time. Order is preserved."""
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(note: str) -> DeviceOrder:
            async with semaphore:
                return await self.extract(note)

        return list(await asyncio.gather(*(_bounded(note) for note in notes)))
