"""Anthropic provider over the Messages HTTP API (httpx)."""

import httpx

from forest.errors import ProviderFailure
from forest.llm.protocol import BrainConfig, ProviderConfig

_DEFAULT_BASE_URL = "https://api.anthropic.com"
_API_VERSION = "2023-06-01"


class AnthropicBrain:
    """Brain backed by POST /v1/messages."""

    def __init__(self, config: ProviderConfig, brain: BrainConfig, api_key: str | None) -> None:
        self._provider = config
        self._config = brain
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
            **self._provider.default_headers,
        }
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def ask(self, prompt: str) -> str:
        body: dict = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens or 1024,
            "temperature": self._config.temperature,
            "messages": [{"role": "user", "content": prompt}],
            **self._config.extra,
        }
        if self._config.system_prompt:
            body["system"] = self._config.system_prompt
        base_url = (self._provider.base_url or _DEFAULT_BASE_URL).rstrip("/")
        try:
            async with httpx.AsyncClient(timeout=self._provider.timeout) as client:
                resp = await client.post(
                    f"{base_url}/v1/messages", headers=self._headers(), json=body
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFailure(f"{self._config.model}: {e}") from e
        parts = [
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        ]
        return "".join(parts)


class AnthropicProvider:
    """Anthropic API via plain HTTP."""

    provider_type = "anthropic"

    def build(
        self,
        config: ProviderConfig,
        brain: BrainConfig,
        api_key: str | None,
    ) -> AnthropicBrain:
        return AnthropicBrain(config, brain, api_key)

    async def health_check(self, config: ProviderConfig, api_key: str | None) -> bool:
        """Report True when a key is configured and the API host answers."""
        if not api_key:
            return False
        base_url = (config.base_url or _DEFAULT_BASE_URL).rstrip("/")
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(
                    f"{base_url}/v1/models",
                    headers={"x-api-key": api_key, "anthropic-version": _API_VERSION},
                )
            return resp.status_code == 200
        except httpx.HTTPError:
            return False
