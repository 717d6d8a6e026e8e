"""OpenAI and OpenAI-compatible providers (OpenAI, OpenRouter, LM Studio, etc.). Chat Completions API."""

import logging

from openai import AsyncOpenAI, OpenAIError

from forest.errors import ProviderFailure
from forest.llm.protocol import BrainConfig, ProviderConfig

logger = logging.getLogger(__name__)


class OpenAIChatBrain:
    """Brain backed by chat.completions on an AsyncOpenAI client."""

    def __init__(self, client: AsyncOpenAI, config: BrainConfig) -> None:
        self._client = client
        self._config = config

    async def ask(self, prompt: str) -> str:
        messages = []
        if self._config.system_prompt:
            messages.append({"role": "system", "content": self._config.system_prompt})
        messages.append({"role": "user", "content": prompt})
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "temperature": self._config.temperature,
            **self._config.extra,
        }
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise ProviderFailure(f"{self._config.model}: {e}") from e
        if not resp.choices:
            raise ProviderFailure(f"{self._config.model}: empty response")
        return resp.choices[0].message.content or ""


class OpenAICompatibleProvider:
    """Builds OpenAIChatBrain instances."""

    provider_type = "openai_compatible"

    def _client(self, config: ProviderConfig, api_key: str | None) -> AsyncOpenAI:
        return AsyncOpenAI(
            base_url=config.base_url,
            api_key=api_key or "not-required",
            default_headers=config.default_headers or None,
            timeout=config.timeout,
            max_retries=0,
        )

    def build(
        self,
        config: ProviderConfig,
        brain: BrainConfig,
        api_key: str | None,
    ) -> OpenAIChatBrain:
        return OpenAIChatBrain(self._client(config, api_key), brain)

    async def health_check(
        self, config: ProviderConfig, api_key: str | None
    ) -> bool:
        try:
            await self._client(config, api_key).models.list()
            return True
        except Exception:
            return False
