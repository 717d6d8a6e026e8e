"""Tests for forest.secrets."""

from unittest.mock import patch

import pytest
from keyring.errors import KeyringError

from forest import secrets


def test_get_secret_fallback_to_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """When keyring returns None, fall back to os.environ."""
    monkeypatch.setenv("FOREST_SECRET_ENV", "from-env")
    with patch("forest.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = None
        assert secrets.get_secret("FOREST_SECRET_ENV") == "from-env"


def test_get_secret_prefers_keyring(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FOREST_SECRET_BOTH", "from-env")
    with patch("forest.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = "from-keyring"
        assert secrets.get_secret("FOREST_SECRET_BOTH") == "from-keyring"
        mock_kr.get_password.assert_called_once_with("forest", "FOREST_SECRET_BOTH")


def test_get_secret_keyring_error_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FOREST_SECRET_ERR", "from-env")
    with patch("forest.secrets.keyring") as mock_kr:
        mock_kr.get_password.side_effect = KeyringError("fail")
        assert secrets.get_secret("FOREST_SECRET_ERR") == "from-env"


def test_get_secret_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FOREST_SECRET_NONE", raising=False)
    with patch("forest.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = None
        assert secrets.get_secret("FOREST_SECRET_NONE") is None


def test_set_secret_writes_keyring() -> None:
    with patch("forest.secrets.keyring") as mock_kr:
        secrets.set_secret("OPENAI_API_KEY", "sk-1")
        mock_kr.set_password.assert_called_once_with("forest", "OPENAI_API_KEY", "sk-1")
