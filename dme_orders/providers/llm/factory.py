from typing import Optional

from dme_orders.config import Settings

from .anthropic import AnthropicProvider
from .base import LLMProvider
from .openai import OpenAIProvider


class LLMFactory:
    """Factory for creating LLM providers from configuration"""

    @staticmethod
    def create(settings: Settings, model: Optional[str] = None) -> LLMProvider:
        """
        Create LLM provider based on settings.

        Args:
            settings: Application settings
            model: Optional model override. If None, uses settings.llm_model

        Raises:
            ValueError: If provider not supported or model/key not configured
        """
        provider = settings.llm_provider.lower()
        model_name = model or settings.llm_model

        if not model_name:
            raise ValueError("LLM_MODEL not configured. Set it in .env (e.g., 'gpt-4o' for OpenAI)")

        if not settings.llm_api_key:
            raise ValueError("LLM_API_KEY not configured. Set it in .env")

        if provider == "openai":
            return OpenAIProvider(
                api_key=settings.llm_api_key,
                model=model_name,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
            )
        elif provider == "anthropic":
            return AnthropicProvider(
                api_key=settings.llm_api_key,
                model=model_name,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
            )
        else:
            raise ValueError(f"Unsupported LLM provider: {provider}")
