"""Inference providers ("brains") used by Nims."""

from forest.llm.protocol import Brain, BrainConfig, BrainProvider, ProviderConfig
from forest.llm.router import BrainRouter

__all__ = ["Brain", "BrainConfig", "BrainProvider", "BrainRouter", "ProviderConfig"]
