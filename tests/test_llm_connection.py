"""
Live provider smoke tests.

Skipped unless LLM_API_KEY is set and LLM_PROVIDER selects the provider.
"""
import pytest

from dme_orders.config import Settings
from dme_orders.providers.llm.anthropic import AnthropicProvider
from dme_orders.providers.llm.openai import OpenAIProvider

settings = Settings()


@pytest.mark.asyncio
async def test_openai_connection():
    """Test actual connection to OpenAI API"""
    if settings.llm_provider != "openai":
        pytest.skip("Skipping OpenAI test (provider not set to openai)")
    if not settings.llm_api_key:
        pytest.skip("LLM_API_KEY not set in settings")

    provider = OpenAIProvider(api_key=settings.llm_api_key, model=settings.llm_model)
    try:
        response = await provider.generate("Say hello", max_tokens=20)
        assert len(response.text) > 0
        print(f"\nOpenAI Response: {response.text}")
    except Exception as e:
        pytest.fail(f"OpenAI connection failed: {str(e)}")


@pytest.mark.asyncio
async def test_anthropic_connection():
    """Test actual connection to Anthropic"""
    if settings.llm_provider != "anthropic":
        pytest.skip("Skipping Anthropic test (provider not set to anthropic)")
    if not settings.llm_api_key:
        pytest.skip("LLM_API_KEY not set in settings")

    provider = AnthropicProvider(api_key=settings.llm_api_key, model="claude-sonnet-4-5")
    try:
        response = await provider.generate("Say hello", max_tokens=20)
        assert len(response.text) > 0
        print(f"\nAnthropic Response: {response.text}")
    except Exception as e:
        pytest.fail(f"Anthropic connection failed: {str(e)}")
