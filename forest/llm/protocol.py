"""Inference provider protocol and configuration dataclasses."""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class BrainConfig:
    """Per-brain model configuration (from config/settings.yaml brains section)."""

    provider: str
    model: str
    temperature: float = 0.0
    max_tokens: int | None = None
    system_prompt: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderConfig:
    """Provider configuration from config/settings.yaml."""

    id: str
    type: str  # openai_compatible | anthropic
    base_url: str | None = None
    api_key_secret: str | None = None
    api_key_literal: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 60.0


@runtime_checkable
class Brain(Protocol):
    """A request/response inference call: rendered prompt in, text out."""

    async def ask(self, prompt: str) -> str: ...


@runtime_checkable
class BrainProvider(Protocol):
    """Contract for an LLM API provider. Builds Brain instances."""

    provider_type: str

    def build(
        self,
        config: ProviderConfig,
        brain: BrainConfig,
        api_key: str | None,
    ) -> Brain:
        """Return a Brain bound to one model."""
        ...

    async def health_check(self, config: ProviderConfig, api_key: str | None) -> bool:
        """Check provider availability."""
        ...
