"""
LLM Extractor Tests

Covers the single-call extractor with mocked providers:
1. Successful extraction and response cleaning
2. Request parameters (system prompt, tokens, temperature)
3. Graceful degradation to the deterministic extractor
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from dme_orders.extraction.llm_extractor import SYSTEM_PROMPT, LLMExtractor, build_extraction_prompt
from dme_orders.extraction.parser import DeterministicExtractor
from dme_orders.providers.llm.base import TokenUsage


CPAP_JSON = {
    "device": "CPAP",
    "mask_type": "full face",
    "add_ons": ["humidifier"],
    "qualifier": "AHI > 20",
    "ordering_provider": "Dr. Cameron",
}


class TestPrompt:
    """Test prompt construction."""

    def test_prompt_lists_fields_and_note(self, cpap_note):
        prompt = build_extraction_prompt(cpap_note)
        assert cpap_note in prompt
        for field in ("device", "patient_name", "dob", "diagnosis", "ordering_provider",
                      "liters", "usage", "mask_type", "add_ons", "qualifier"):
            assert field in prompt
        assert "JSON" in prompt


class TestLLMExtraction:
    """Test successful LLM extraction."""

    @pytest.mark.asyncio
    async def test_extracts_order(self, settings, make_llm, cpap_note):
        llm = make_llm(CPAP_JSON)
        extractor = LLMExtractor(settings, llm=llm)

        order = await extractor.extract(cpap_note)

        assert order.device == "CPAP"
        assert order.mask_type == "full face"
        assert order.add_ons == ("humidifier",)
        assert order.ordering_provider == "Dr. Cameron"

    @pytest.mark.asyncio
    async def test_handles_fenced_json(self, settings, make_llm, cpap_note):
        llm = make_llm(f"```json\n{json.dumps(CPAP_JSON)}\n```")
        order = await LLMExtractor(settings, llm=llm).extract(cpap_note)
        assert order.device == "CPAP"

    @pytest.mark.asyncio
    async def test_cleans_string_values(self, settings, make_llm):
        llm = make_llm({"device": ' "Oxygen Tank", ', "liters": "2 L,", "usage": "   "})
        order = await LLMExtractor(settings, llm=llm).extract("oxygen note")
        assert order.device == "Oxygen Tank"
        assert order.liters == "2 L"
        assert order.usage is None

    @pytest.mark.asyncio
    async def test_request_parameters(self, make_settings, make_llm, cpap_note):
        settings = make_settings(llm_max_tokens=512, llm_temperature=0.2)
        llm = make_llm(CPAP_JSON)

        await LLMExtractor(settings, llm=llm).extract(cpap_note)

        llm.generate.assert_awaited_once()
        args, kwargs = llm.generate.await_args
        assert cpap_note in args[0]
        assert kwargs["system_prompt"] == SYSTEM_PROMPT
        assert kwargs["max_tokens"] == 512
        assert kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_try_extract_reports_usage(self, settings, make_llm, cpap_note):
        llm = make_llm(CPAP_JSON, usage=TokenUsage(prompt_tokens=80, completion_tokens=40, total_tokens=120))
        result = await LLMExtractor(settings, llm=llm).try_extract(cpap_note)
        assert result.success is True
        assert result.metadata["tokens_used"] == 120
        assert result.metadata["llm_provider"] == "openai"


class TestGracefulDegradation:
    """Every failure yields exactly the deterministic result."""

    @pytest.mark.asyncio
    async def test_no_credentials_uses_deterministic(self, settings, oxygen_note):
        extractor = LLMExtractor(settings)
        result = await extractor.try_extract(oxygen_note)
        assert result.success is False
        assert "credentials" in result.error

        order = await extractor.extract(oxygen_note)
        assert order == DeterministicExtractor().extract(oxygen_note)

    @pytest.mark.asyncio
    async def test_provider_error_matches_deterministic(self, settings, make_llm, oxygen_note, cpap_note):
        for note in (oxygen_note, cpap_note, "", "nonsense"):
            llm = make_llm(RuntimeError("rate limited"))
            order = await LLMExtractor(settings, llm=llm).extract(note)
            assert order == DeterministicExtractor().extract(note)

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back(self, settings, make_llm, oxygen_note):
        llm = make_llm("I could not find a device order.")
        extractor = LLMExtractor(settings, llm=llm)

        result = await extractor.try_extract(oxygen_note)
        assert result.success is False
        assert "JSON" in result.error
        assert result.metadata["raw_response"].startswith("I could not")

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, make_settings, oxygen_note):
        settings = make_settings(llm_timeout_seconds=0.01)

        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        llm = AsyncMock()
        llm.generate = AsyncMock(side_effect=slow)

        order = await LLMExtractor(settings, llm=llm).extract(oxygen_note)
        assert order == DeterministicExtractor().extract(oxygen_note)

    @pytest.mark.asyncio
    async def test_empty_note_skips_call(self, settings, make_llm):
        llm = make_llm(CPAP_JSON)
        order = await LLMExtractor(settings, llm=llm).extract("   ")
        llm.generate.assert_not_awaited()
        assert order.device == "Unknown"
