from pydantic_settings import BaseSettings

from dme_orders.extraction.models import ExtractionMode


class Settings(BaseSettings):
    """Application configuration with environment variable support.

    Constructed once by the caller and passed explicitly to the
    orchestrator; instances are frozen.
    """

    # App
    app_name: str = "DME Order Extractor"
    debug: bool = False
    log_level: str = "INFO"
    structured_logging: bool = False

    # LLM Configuration (optional - deterministic extraction is used without a key)
    llm_provider: str = "openai"  # 'openai' or 'anthropic'
    llm_model: str = "gpt-4o"
    llm_api_key: str = ""
    llm_max_tokens: int = 1000
    llm_temperature: float = 0.1
    llm_timeout_seconds: float = 30.0

    # Agentic extraction
    use_agentic_mode: bool = False
    extraction_mode: ExtractionMode = ExtractionMode.STANDARD
    require_validation: bool = True
    enable_self_correction: bool = True
    validation_threshold: float = 0.7
    max_correction_attempts: int = 1
    agent_temperature_cap: float = 0.3  # agents run cooler than the single-shot extractor

    # Downstream order API
    order_api_base_url: str = "https://alert-api.com"
    order_api_endpoint: str = "/device-orders"
    order_api_timeout_seconds: float = 30.0
    order_api_retry_count: int = 3
    enable_order_posting: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        frozen = True
        extra = "ignore"

    @property
    def has_llm_credentials(self) -> bool:
        """True when both an API key and a model are configured."""
        return bool(self.llm_api_key.strip() and self.llm_model.strip())

    @property
    def agent_temperature(self) -> float:
        return min(self.llm_temperature, self.agent_temperature_cap)
