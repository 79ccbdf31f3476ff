"""
LLM Extractor - single-call structured extraction of a device order.

One prompt, one completion, JSON out. Every failure (no credentials, network,
timeout, unparseable response) degrades to the deterministic extractor run on
the original note text, so callers of `extract` never see an exception.
"""
import asyncio
import logging
from typing import Optional

from dme_orders.agent.tools.base import Tool, ToolResult
from dme_orders.config import Settings
from dme_orders.extraction.json_utils import order_from_json, parse_json_object
from dme_orders.extraction.models import DeviceOrder
from dme_orders.extraction.parser import DeterministicExtractor
from dme_orders.providers.llm.base import LLMProvider
from dme_orders.providers.llm.factory import LLMFactory

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a medical device extraction assistant."

EXTRACTION_PROMPT = '''Extract medical device information from the following physician note and return as JSON:

Physician Note:
{note_text}

Return ONLY a JSON object with these fields (omit null/empty fields):
- device: Device type ("CPAP", "BiPAP", "Oxygen Tank", "Wheelchair", "Walker", "Nebulizer", "Hospital Bed", "Ventilator", "TENS Unit", "Commode", "Blood Glucose Monitor", etc.)
- patient_name, dob, diagnosis, ordering_provider
- liters: For oxygen ("2 L")
- usage: When used ("sleep and exertion")
- mask_type: For CPAP/BiPAP ("full face")
- add_ons: Array of features (["humidifier", "side rails", "pressure relief"])
- qualifier: Medical qualifiers ("AHI > 20", "pressure sore risk", "insulin dependent")

Return valid JSON only.'''


def build_extraction_prompt(note_text: str) -> str:
    """Fill the single-shot extraction prompt with the note."""
    return EXTRACTION_PROMPT.format(note_text=note_text)


class LLMExtractor(Tool):
    """
    Extracts a DeviceOrder with a single LLM call.

    The provider is created lazily from settings, and only when credentials
    are configured; an injected provider is always used as-is.
    """

    def __init__(
        self,
        settings: Settings,
        llm: Optional[LLMProvider] = None,
        fallback: Optional[DeterministicExtractor] = None,
    ):
        self.settings = settings
        self._llm = llm
        self._fallback = fallback or DeterministicExtractor()

    @property
    def name(self) -> str:
        return "llm"

    @property
    def description(self) -> str:
        return "Single-prompt LLM extraction of a device order, returned as JSON."

    def _resolve_llm(self) -> Optional[LLMProvider]:
        if self._llm is None and self.settings.has_llm_credentials:
            self._llm = LLMFactory.create(self.settings)
        return self._llm

    async def execute(self, input_data: str) -> ToolResult:
        return await self.try_extract(input_data)

    async def try_extract(self, note_text: str) -> ToolResult:
        """
        Run the LLM extraction without falling back.

        Returns:
            ToolResult with the DeviceOrder, or a failure describing why the
            call could not produce one
        """
        if not isinstance(note_text, str) or not note_text.strip():
            return ToolResult.fail("Empty or whitespace-only note provided")

        try:
            llm = self._resolve_llm()
        except ValueError as e:
            return ToolResult.fail(f"LLM provider unavailable: {e}")
        if llm is None:
            return ToolResult.fail("No LLM credentials configured")

        try:
            response = await asyncio.wait_for(
                llm.generate(
                    build_extraction_prompt(note_text),
                    system_prompt=SYSTEM_PROMPT,
                    max_tokens=self.settings.llm_max_tokens,
                    temperature=self.settings.llm_temperature,
                ),
                timeout=self.settings.llm_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return ToolResult.fail(
                f"LLM call timed out after {self.settings.llm_timeout_seconds}s"
            )
        except Exception as e:
            return ToolResult.fail(f"LLM call failed: {e}", error_type=type(e).__name__)

        try:
            order = order_from_json(parse_json_object(response.text))
        except (ValueError, RecursionError) as e:
            return ToolResult.fail(
                f"Failed to parse LLM response as JSON: {e}",
                raw_response=(response.text or "")[:500],
            )

        return ToolResult.ok(
            data=order,
            llm_provider=llm.get_provider_name(),
            llm_model=response.model,
            tokens_used=response.usage.total_tokens if response.usage else 0,
        )

    async def extract(self, note_text: str) -> DeviceOrder:
        """Extract an order, falling back to deterministic parsing on any failure."""
        try:
            result = await self.try_extract(note_text)
        except Exception as e:
            logger.exception("LLM extraction raised unexpectedly")
            result = ToolResult.fail(str(e))

        if result.success:
            return result.data

        logger.warning("LLM extraction failed, using deterministic parser: %s", result.error)
        return self._fallback.extract(note_text)
