from typing import Optional

from anthropic import AsyncAnthropic
from tenacity import retry, stop_after_attempt, wait_exponential

from .base import LLMProvider, LLMResponse, TokenUsage


class AnthropicProvider(LLMProvider):
    """Anthropic LLM provider with automatic retries"""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5", max_tokens: int = 1000, temperature: float = 0.1):
        self.client = AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=10), reraise=True)
    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Generate completion via Anthropic API"""
        kwargs = {}
        if system_prompt:
            kwargs["system"] = system_prompt

        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature if temperature is None else temperature,
            messages=[{"role": "user", "content": prompt}],
            **kwargs
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )
        return LLMResponse(text=text, model=response.model or self.model, usage=usage)

    def get_provider_name(self) -> str:
        return "anthropic"

    def get_model_name(self) -> str:
        return self.model
