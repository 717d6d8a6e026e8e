"""BrainRouter: bridge from config to Brain instances."""

import logging
from typing import Any, Callable

from forest.llm.protocol import Brain, BrainConfig, BrainProvider, ProviderConfig
from forest.llm.providers import AnthropicProvider, OpenAICompatibleProvider

logger = logging.getLogger(__name__)


def _dict_to_provider_config(provider_id: str, data: dict[str, Any]) -> ProviderConfig:
    return ProviderConfig(
        id=provider_id,
        type=str(data.get("type", "openai_compatible")),
        base_url=data.get("base_url"),
        api_key_secret=data.get("api_key_secret"),
        api_key_literal=data.get("api_key_literal"),
        default_headers=dict(data.get("default_headers") or {}),
        timeout=float(data.get("timeout", 60.0)),
    )


def _dict_to_brain_config(data: dict[str, Any], provider_id: str) -> BrainConfig:
    return BrainConfig(
        provider=provider_id,
        model=str(data.get("model", "")),
        temperature=float(data.get("temperature", 0.0)),
        max_tokens=data.get("max_tokens"),
        system_prompt=str(data.get("system_prompt", "")),
        extra=dict(data.get("extra") or {}),
    )


class BrainRouter:
    """Resolves a brain name to a Brain instance via config/settings.yaml."""

    def __init__(
        self,
        settings: dict[str, Any],
        secrets_getter: Callable[[str], str | None],
    ) -> None:
        self._secrets = secrets_getter
        self._provider_configs: dict[str, ProviderConfig] = {}
        self._brain_configs: dict[str, BrainConfig] = {}
        self._providers: dict[str, BrainProvider] = {}
        self._overrides: dict[str, Brain] = {}
        self._cache: dict[str, Brain] = {}
        self._load(settings)
        self._register_defaults()

    def _load(self, settings: dict[str, Any]) -> None:
        for pid, pdata in (settings.get("providers") or {}).items():
            if isinstance(pdata, dict):
                self._provider_configs[str(pid)] = _dict_to_provider_config(str(pid), pdata)
        for name, bdata in (settings.get("brains") or {}).items():
            if isinstance(bdata, dict):
                provider_id = bdata.get("provider")
                if provider_id:
                    self._brain_configs[str(name)] = _dict_to_brain_config(
                        bdata, str(provider_id)
                    )

    def _register_defaults(self) -> None:
        openai_compat = OpenAICompatibleProvider()
        self._providers["openai"] = openai_compat
        self._providers["openai_compatible"] = openai_compat
        self._providers["anthropic"] = AnthropicProvider()

    def register_brain(self, name: str, brain: Brain) -> None:
        """Install a ready Brain under name, bypassing provider config."""
        self._overrides[name] = brain

    def has_brain(self, name: str) -> bool:
        return name in self._overrides or name in self._brain_configs

    def _resolve_key(self, cfg: ProviderConfig) -> str | None:
        if cfg.api_key_literal:
            return cfg.api_key_literal
        if cfg.api_key_secret:
            return self._secrets(cfg.api_key_secret)
        return None

    def get_brain(self, name: str = "default") -> Brain:
        """Return cached or newly built Brain. Raises KeyError when unresolvable."""
        if name in self._overrides:
            return self._overrides[name]
        if name in self._cache:
            return self._cache[name]
        brain_cfg = self._brain_configs.get(name)
        if not brain_cfg:
            raise KeyError(f"No brain config for {name!r} in config/settings.yaml")
        provider_cfg = self._provider_configs.get(brain_cfg.provider)
        if not provider_cfg:
            raise KeyError(f"Unknown provider {brain_cfg.provider!r} for brain {name!r}")
        provider = self._providers.get(provider_cfg.type)
        if not provider:
            raise KeyError(
                f"Unknown provider type {provider_cfg.type!r} for provider id {provider_cfg.id!r}"
            )
        brain = provider.build(provider_cfg, brain_cfg, self._resolve_key(provider_cfg))
        self._cache[name] = brain
        return brain

    def invalidate(self, name: str | None = None) -> None:
        """Drop cached brains so the next get_brain rebuilds them from settings."""
        if name:
            self._cache.pop(name, None)
        else:
            self._cache.clear()

    async def health_check_all(self) -> dict[str, bool]:
        """Check each configured provider; return provider_id -> ok."""
        results: dict[str, bool] = {}
        for pid, pcfg in self._provider_configs.items():
            provider = self._providers.get(pcfg.type)
            if provider:
                key = self._resolve_key(pcfg)
                try:
                    results[pid] = await provider.health_check(pcfg, key)
                except Exception as e:
                    logger.debug("health_check %s: %s", pid, e)
                    results[pid] = False
        return results
