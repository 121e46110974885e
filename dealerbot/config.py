# dealerbot/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool | None = None  # None = JSON in prod, console elsewhere
    language: Literal["pt", "en"] = "pt"
    dealership_name: str = "Renatinhu's Cars"

    # Database (optional: in-memory store is used when not set)
    database_url: str | None = None
    pg_pool_min: int = 2
    pg_pool_max: int = 10

    # Guardrails
    chat_rate_limit_per_minute: int = 10  # Max messages per identity per window
    chat_rate_limit_window_seconds: int = 60
    max_input_length: int = 1000
    max_output_length: int = 4096  # WhatsApp hard message-size ceiling

    # LLM providers
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_priority: int = 1
    openai_cost_per_1m_tokens: float = 0.15
    groq_api_key: str | None = None
    groq_model: str = "llama-3.1-8b-instant"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_priority: int = 2
    groq_cost_per_1m_tokens: float = 0.05
    llm_timeout_seconds: float = 15.0

    # Circuit breaker (per provider)
    circuit_failure_threshold: int = Field(3, ge=1)
    circuit_cooldown_seconds: float = 60.0
    circuit_backoff_factor: float = 1.0  # >1.0 grows the cooldown after each failed trial
    circuit_max_cooldown_seconds: float = 600.0

    # Conversation graph ceilings
    max_error_count: int = 3
    max_loop_count: int = 5
    interest_confidence_threshold: float = 0.7

    # Search
    search_timeout_seconds: float = 10.0
    search_limit: int = 5
    catalog_path: str | None = None  # JSON file for the reference catalog search

    # Lead delivery
    lead_channel: Literal["log", "telegram", "whatsapp"] = "log"
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    seller_whatsapp: str | None = None  # Seller number that receives leads (e.g., 5511988887777)
    meta_access_token: str | None = None
    meta_phone_number_id: str | None = None
    meta_graph_api_version: str = "v20.0"
    lead_max_attempts: int = 3
    lead_base_retry_delay: float = 1.0  # seconds, doubles on each retry
    lead_timezone: str = "America/Sao_Paulo"

    # Privacy
    data_rights_confirmation_ttl_seconds: int = 300

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is None:
            return self.is_production
        return self.log_json

    @property
    def llm_configured(self) -> bool:
        return bool(self.openai_api_key or self.groq_api_key)

    @property
    def lead_channel_configured(self) -> bool:
        if self.lead_channel == "telegram":
            return bool(self.telegram_bot_token and self.telegram_chat_id)
        if self.lead_channel == "whatsapp":
            return bool(
                self.seller_whatsapp
                and self.meta_access_token
                and self.meta_phone_number_id
            )
        return True

    def validate_required_for_production(self) -> list[str]:
        """Return names of settings that must be present in prod."""
        if not self.is_production:
            return []

        missing: list[str] = []
        if not self.database_url:
            missing.append("database_url")
        if self.lead_channel == "log":
            missing.append("lead_channel")
        elif not self.lead_channel_configured:
            missing.append(f"{self.lead_channel} lead channel credentials")
        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.llm_configured:
        warnings.append(
            "No LLM provider API key set: every generation will use the offline responder."
        )

    if s.lead_channel != "log" and not s.lead_channel_configured:
        warnings.append(
            f"lead_channel={s.lead_channel} but its credentials are incomplete (leads will not be delivered)."
        )

    if not s.database_url:
        warnings.append("database_url is not set (conversations are kept in memory only).")

    if s.max_output_length > 4096:
        warnings.append("max_output_length > 4096 exceeds the WhatsApp message-size ceiling.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    # Logging is not configured yet at import time
    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
