"""
Extraction Orchestrator Tests

Covers strategy selection, fallback through the chain, totality and
batch extraction.
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from dme_orders.extraction.models import DeviceOrder
from dme_orders.orchestrator import DeterministicStrategy, ExtractionOrchestrator
from dme_orders.providers.llm.base import LLMResponse


CPAP_JSON = {"device": "CPAP", "mask_type": "nasal", "ordering_provider": "Dr. Cameron"}


class TestStrategySelection:
    """Test which strategy produces the order."""

    @pytest.mark.asyncio
    async def test_deterministic_without_credentials(self, settings, oxygen_note):
        orchestrator = ExtractionOrchestrator(settings)
        outcome = await orchestrator.extract_detailed(oxygen_note)

        assert orchestrator.has_llm is False
        assert outcome.strategy == "deterministic"
        assert outcome.attempted == ["deterministic"]
        assert outcome.order.device == "Oxygen Tank"

    @pytest.mark.asyncio
    async def test_llm_when_configured(self, settings, make_llm, cpap_note):
        orchestrator = ExtractionOrchestrator(settings, llm=make_llm(CPAP_JSON))
        outcome = await orchestrator.extract_detailed(cpap_note)

        assert outcome.strategy == "llm"
        assert outcome.attempted == ["llm"]
        assert outcome.order.mask_type == "nasal"

    @pytest.mark.asyncio
    async def test_llm_failure_falls_through(self, settings, make_llm, cpap_note):
        orchestrator = ExtractionOrchestrator(settings, llm=make_llm(RuntimeError("quota exceeded")))
        outcome = await orchestrator.extract_detailed(cpap_note)

        assert outcome.strategy == "deterministic"
        assert outcome.attempted == ["llm", "deterministic"]
        assert outcome.order.mask_type == "full face"

    @pytest.mark.asyncio
    async def test_agentic_mode(self, make_settings, cpap_note):
        orchestrator = ExtractionOrchestrator(make_settings(use_agentic_mode=True))
        outcome = await orchestrator.extract_detailed(cpap_note)

        assert outcome.strategy == "agentic"
        assert outcome.confidence == pytest.approx(0.8)
        assert outcome.agentic_result is not None
        assert len(outcome.agentic_result.reasoning_steps) == 4
        assert outcome.order.device == "CPAP"

    @pytest.mark.asyncio
    async def test_raising_strategy_is_skipped(self, make_settings, cpap_note):
        orchestrator = ExtractionOrchestrator(make_settings(use_agentic_mode=True))
        orchestrator._agentic.extract_with_agents = AsyncMock(side_effect=RuntimeError("boom"))

        outcome = await orchestrator.extract_detailed(cpap_note)

        assert outcome.strategy == "deterministic"
        assert outcome.attempted == ["agentic", "deterministic"]

    @pytest.mark.asyncio
    async def test_every_strategy_failing(self, settings, cpap_note):
        orchestrator = ExtractionOrchestrator(settings)
        orchestrator._deterministic.extract = Mock(side_effect=RuntimeError("broken"))

        outcome = await orchestrator.extract_detailed(cpap_note)

        assert outcome.strategy == "none"
        assert outcome.order == DeviceOrder()

    @pytest.mark.asyncio
    async def test_strategy_run_reports_exceptions(self):
        extractor = Mock()
        extractor.extract.side_effect = ValueError("bad input")

        result = await DeterministicStrategy(extractor).run("note")

        assert result.success is False
        assert result.error == "bad input"
        assert result.metadata["error_type"] == "ValueError"
        assert result.metadata["duration_ms"] >= 0

    def test_unsupported_provider_disables_llm(self, make_settings):
        orchestrator = ExtractionOrchestrator(make_settings(llm_api_key="key", llm_provider="cohere"))
        assert orchestrator.has_llm is False
        assert [s.name for s in orchestrator.strategies(orchestrator.default_context())] == ["deterministic"]

    def test_default_context(self, make_settings):
        orchestrator = ExtractionOrchestrator(make_settings(require_validation=False))
        context = orchestrator.default_context("note.txt")
        assert context.source_file == "note.txt"
        assert context.require_validation is False


class TestTotality:
    """extract() always returns an order."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("note", ["", "   ", "no device here", None, 42])
    async def test_always_returns_order(self, settings, note):
        order = await ExtractionOrchestrator(settings).extract(note)
        assert isinstance(order, DeviceOrder)
        assert order.device == "Unknown"
        assert order.ordering_provider == "Dr. Unknown"

    def test_extract_sync(self, settings, oxygen_note):
        order = ExtractionOrchestrator(settings).extract_sync(oxygen_note)
        assert order.liters == "2 L"


class TestBatchExtraction:
    """Test concurrent batch extraction."""

    @pytest.mark.asyncio
    async def test_preserves_order(self, settings, oxygen_note, cpap_note):
        orders = await ExtractionOrchestrator(settings).extract_many([oxygen_note, cpap_note, ""])
        assert [o.device for o in orders] == ["Oxygen Tank", "CPAP", "Unknown"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, settings):
        active = 0
        peak = 0

        async def slow_generate(*args, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return LLMResponse(text='{"device": "Walker"}', model="test-model")

        llm = Mock()
        llm.get_provider_name.return_value = "openai"
        llm.get_model_name.return_value = "test-model"
        llm.generate = AsyncMock(side_effect=slow_generate)

        orders = await ExtractionOrchestrator(settings, llm=llm).extract_many(
            [f"note {i}" for i in range(6)], concurrency=2
        )

        assert len(orders) == 6
        assert all(o.device == "Walker" for o in orders)
        assert peak <= 2
        assert llm.generate.await_count == 6
