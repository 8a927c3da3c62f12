"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # LLM Configuration
    gemini_api_key: str = ""
    ai_model: str = "gemini-2.5-flash"
    ai_model_fallbacks: str = "gemini-2.5-flash-lite,gemini-2.0-flash"
    ai_temperature: float = 0.1
    ai_thinking_budget: int = 0  # Dropped automatically for models that reject it
    ai_max_output_tokens: int = 8192

    # Feed sources
    feeds_dir: str = "data/feeds"
    sources_catalog_path: str = "config/sources_catalog.json"
    reference_feed_url: str = ""  # Explicit override for the canonical reference feed
    request_timeout_seconds: float = 30.0

    # Date windows
    timezone: str = "America/Los_Angeles"
    days_ahead: int = 45
    event_limit: int = 150
    lookback_days: int = 30
    authoritative_horizon_days: int = 365
    reference_window_multiplier: int = 2  # Reference pool looks further ahead for matching
    supplementary_window_multiplier: int = 6

    # Digest processing
    organizer_cache_ttl_hours: int = 24
    week_cache_ttl_hours: int = 24
    week_boundary_day: str = "sunday"
    summary_max_chars: int = 230
    extract_time_sensitive: bool = True

    # Application
    debug: bool = False
    log_level: str = "INFO"

    def model_chain(self) -> list[str]:
        """Primary model followed by fallbacks, de-duplicated in order."""
        chain: list[str] = []
        for name in [self.ai_model, *self.ai_model_fallbacks.replace(";", ",").split(",")]:
            name = name.strip()
            if name and name not in chain:
                chain.append(name)
        return chain


settings = Settings()
