"""Global configuration for InnDesign.

Reads provider credentials and limits from environment variables by default.
When embedded, the host can populate the object before building the
orchestrator so that keys don't have to live in the process environment.

    from inndesign.config import settings
    settings.OPENAI_API_KEY = "sk-..."
"""

import os
from dataclasses import dataclass
from typing import Optional

from inndesign.types import ProviderId


class Settings:
    """Lightweight mutable config, one global instance."""

    REPLICATE_API_TOKEN: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    DEFAULT_PROVIDER: Optional[str] = None
    FALLBACK_PROVIDER: Optional[str] = None
    DAILY_COST_LIMIT_USD: Optional[float] = None
    MONTHLY_COST_LIMIT_USD: Optional[float] = None
    COST_CACHE_TTL_SECONDS: Optional[float] = None
    MAX_VARIATIONS: Optional[int] = None
    DEFAULT_VARIATIONS: Optional[int] = None
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None
    STORAGE_BUCKET: Optional[str] = None

    def get(self, name: str) -> Optional[str]:
        """Return the attribute value if set, otherwise fall back to env."""
        value = getattr(self, name, None)
        if value is not None:
            return value if isinstance(value, str) else str(value)
        return os.getenv(name)

    def get_float(self, name: str, default: float) -> float:
        raw = self.get(name)
        return float(raw) if raw else default

    def get_int(self, name: str, default: int) -> int:
        raw = self.get(name)
        return int(raw) if raw else default


settings = Settings()


@dataclass(frozen=True)
class ProviderConfig:
    api_key: str
    timeout_ms: int = 120_000
    max_retries: int = 3
    requests_per_minute: int | None = None
    base_url: str | None = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


DEFAULT_DAILY_LIMIT_USD = 10.0
DEFAULT_MONTHLY_LIMIT_USD = 200.0
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_MAX_VARIATIONS = 5
DEFAULT_NUM_VARIATIONS = 3
DEFAULT_STORAGE_BUCKET = "design-images"


def provider_configs(config: Settings = settings) -> dict[ProviderId, ProviderConfig]:
    """Provider configs for every backend that has credentials."""
    configs: dict[ProviderId, ProviderConfig] = {}
    replicate_token = config.get("REPLICATE_API_TOKEN")
    if replicate_token:
        configs[ProviderId.REPLICATE] = ProviderConfig(
            api_key=replicate_token,
            timeout_ms=300_000,
            max_retries=3,
            requests_per_minute=60,
        )
    openai_key = config.get("OPENAI_API_KEY")
    if openai_key:
        configs[ProviderId.OPENAI] = ProviderConfig(
            api_key=openai_key,
            timeout_ms=120_000,
            max_retries=2,
            requests_per_minute=50,
        )
    return configs


def _provider_choice(raw: str | None) -> ProviderId | None:
    if not raw:
        return None
    try:
        return ProviderId(raw.strip().lower())
    except ValueError:
        raise ValueError(f"Unsupported provider in configuration: {raw}") from None


def default_provider(config: Settings = settings) -> ProviderId:
    chosen = _provider_choice(config.get("DEFAULT_PROVIDER"))
    if chosen:
        return chosen
    return ProviderId.REPLICATE if config.get("REPLICATE_API_TOKEN") else ProviderId.OPENAI


def fallback_provider(config: Settings = settings) -> ProviderId:
    chosen = _provider_choice(config.get("FALLBACK_PROVIDER"))
    if chosen:
        return chosen
    return ProviderId.OPENAI if config.get("OPENAI_API_KEY") else ProviderId.REPLICATE
