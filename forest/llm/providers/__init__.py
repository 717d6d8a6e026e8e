"""Built-in inference providers."""

from forest.llm.providers.anthropic import AnthropicProvider
from forest.llm.providers.openai_compatible import OpenAICompatibleProvider

__all__ = ["OpenAICompatibleProvider", "AnthropicProvider"]
