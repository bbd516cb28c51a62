"""
Completion provider configuration.

One OpenAI-compatible endpoint per deployment; hosted APIs and local servers
such as LM Studio or vLLM differ only in base URL and key.
"""

from __future__ import annotations

from dataclasses import dataclass

from parley.config import Settings, get_settings


@dataclass(frozen=True)
class GenerationParams:
    temperature: float = 0.7
    max_tokens: int = 256


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for the completion provider."""

    base_url: str
    api_key: str | None = None
    timeout_seconds: float = 120.0
    connect_timeout_seconds: float = 90.0
    generation: GenerationParams = GenerationParams()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ProviderConfig":
        settings = settings or get_settings()
        return cls(
            base_url=settings.provider_base_url.rstrip("/"),
            api_key=settings.provider_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
            connect_timeout_seconds=settings.provider_connect_timeout_seconds,
            generation=GenerationParams(
                temperature=settings.generation_temperature,
                max_tokens=settings.generation_max_tokens,
            ),
        )

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers
