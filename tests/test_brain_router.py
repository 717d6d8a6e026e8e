"""Tests for BrainRouter: config loading, get_brain, overrides, providers."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from forest.errors import ProviderFailure
from forest.llm import BrainRouter
from forest.llm.protocol import BrainConfig, ProviderConfig
from forest.llm.providers.anthropic import AnthropicBrain
from forest.llm.providers.openai_compatible import OpenAIChatBrain


def _mock_secrets(key: str) -> str | None:
    if key == "openai_api_key":
        return "sk-test-key"
    if key == "anthropic_api_key":
        return "sk-ant-test"
    return None


class TestBrainRouterConfig:
    """Config loading and resolution errors."""

    def test_empty_settings_raises_on_get_brain(self) -> None:
        router = BrainRouter(settings={}, secrets_getter=_mock_secrets)
        assert router.has_brain("default") is False
        with pytest.raises(KeyError, match="No brain config"):
            router.get_brain("default")

    def test_unknown_provider(self) -> None:
        settings = {"brains": {"default": {"provider": "missing", "model": "m"}}}
        router = BrainRouter(settings=settings, secrets_getter=_mock_secrets)
        assert router.has_brain("default") is True
        with pytest.raises(KeyError, match="Unknown provider"):
            router.get_brain("default")

    def test_unknown_provider_type(self) -> None:
        settings = {
            "providers": {"weird": {"type": "carrier_pigeon"}},
            "brains": {"default": {"provider": "weird", "model": "m"}},
        }
        router = BrainRouter(settings=settings, secrets_getter=_mock_secrets)
        with pytest.raises(KeyError, match="Unknown provider type"):
            router.get_brain("default")

    def test_builds_openai_brain_and_caches(self) -> None:
        settings = {
            "providers": {"openai": {"type": "openai_compatible", "api_key_secret": "openai_api_key"}},
            "brains": {"default": {"provider": "openai", "model": "gpt-4o-mini"}},
        }
        router = BrainRouter(settings=settings, secrets_getter=_mock_secrets)
        brain = router.get_brain("default")
        assert isinstance(brain, OpenAIChatBrain)
        assert router.get_brain("default") is brain
        router.invalidate("default")
        assert router.get_brain("default") is not brain

    def test_builds_anthropic_brain(self) -> None:
        settings = {
            "providers": {"anthropic": {"type": "anthropic", "api_key_secret": "anthropic_api_key"}},
            "brains": {"judge": {"provider": "anthropic", "model": "claude-sonnet"}},
        }
        router = BrainRouter(settings=settings, secrets_getter=_mock_secrets)
        assert isinstance(router.get_brain("judge"), AnthropicBrain)

    def test_brain_without_provider_ignored(self) -> None:
        router = BrainRouter(
            settings={"brains": {"default": {"model": "x"}}}, secrets_getter=_mock_secrets
        )
        assert router.has_brain("default") is False


class TestBrainRouterOverrides:
    """register_brain bypasses provider configuration."""

    def test_override_wins(self) -> None:
        settings = {
            "providers": {"openai": {"type": "openai_compatible", "api_key_literal": "x"}},
            "brains": {"default": {"provider": "openai", "model": "gpt-4o-mini"}},
        }
        router = BrainRouter(settings=settings, secrets_getter=_mock_secrets)
        fake = AsyncMock()
        router.register_brain("default", fake)
        assert router.get_brain("default") is fake
        assert router.has_brain("default")


class TestOpenAIChatBrain:
    """Chat completions call shape."""

    async def test_ask_sends_system_and_user(self) -> None:
        client = MagicMock()
        message = MagicMock(content="YES")
        client.chat.completions.create = AsyncMock(
            return_value=MagicMock(choices=[MagicMock(message=message)])
        )
        brain = OpenAIChatBrain(
            client,
            BrainConfig(provider="openai", model="gpt-4o-mini", system_prompt="Be terse.", max_tokens=5),
        )
        assert await brain.ask("Pursue?") == "YES"
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "Pursue?"},
        ]
        assert kwargs["max_tokens"] == 5
        assert kwargs["temperature"] == 0.0

    async def test_empty_choices_is_provider_failure(self) -> None:
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[]))
        brain = OpenAIChatBrain(client, BrainConfig(provider="openai", model="m"))
        with pytest.raises(ProviderFailure):
            await brain.ask("hi")


class TestAnthropicBrain:
    """Messages API over httpx."""

    async def test_http_error_is_provider_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def refuse(self, url, **kwargs):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr(httpx.AsyncClient, "post", refuse)
        brain = AnthropicBrain(
            ProviderConfig(id="anthropic", type="anthropic"),
            BrainConfig(provider="anthropic", model="claude"),
            "sk-ant-test",
        )
        with pytest.raises(ProviderFailure, match="refused"):
            await brain.ask("hi")

    async def test_text_blocks_joined(self, monkeypatch: pytest.MonkeyPatch) -> None:
        captured: dict = {}

        async def answer(self, url, **kwargs):
            captured["url"] = url
            captured["headers"] = kwargs["headers"]
            return httpx.Response(
                200,
                json={"content": [{"type": "text", "text": "YE"}, {"type": "text", "text": "S"}]},
                request=httpx.Request("POST", url),
            )

        monkeypatch.setattr(httpx.AsyncClient, "post", answer)
        brain = AnthropicBrain(
            ProviderConfig(id="anthropic", type="anthropic"),
            BrainConfig(provider="anthropic", model="claude"),
            "sk-ant-test",
        )
        assert await brain.ask("Pursue?") == "YES"
        assert captured["url"] == "https://api.anthropic.com/v1/messages"
        assert captured["headers"]["x-api-key"] == "sk-ant-test"
