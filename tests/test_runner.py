"""Tests for the forest command line."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from forest import runner
from forest.events.river import JournalRiver
from forest.settings import get_default_settings


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(runner, "_PROJECT_ROOT", tmp_path)
    monkeypatch.setattr(runner, "load_settings", get_default_settings)
    return tmp_path


async def _stored(db_path: Path, subject: str) -> list:
    river = JournalRiver(db_path)
    try:
        return await river.journal.fetch_by_subject(subject)
    finally:
        await river.close()


class TestPublishCommand:
    def test_publish_prints_envelope(self, project: Path, capsys: pytest.CaptureFixture) -> None:
        assert runner.main(["publish", "contact.created", '{"id": "c-1"}']) == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["subject"] == "contact.created"
        assert printed["payload"] == {"id": "c-1"}
        assert printed["source"] == "cli"
        assert printed["hops"] == 0

        (stored,) = asyncio.run(_stored(project / "data" / "river.db", "contact.created"))
        assert stored.id == printed["id"]

    def test_publish_rejects_bad_json(self, project: Path) -> None:
        assert runner.main(["publish", "a.b", "{nope"]) == 2

    def test_publish_rejects_non_object(self, project: Path) -> None:
        assert runner.main(["publish", "a.b", "[1]"]) == 2

    def test_publish_usage(self, project: Path) -> None:
        assert runner.main(["publish", "a.b"]) == 2


class TestCheckCommand:
    def test_missing_config(self, project: Path, capsys: pytest.CaptureFixture) -> None:
        assert runner.main(["check", str(project / "forest.yaml")]) == 1
        assert "not found" in capsys.readouterr().out

    def test_probes_providers(self, project: Path, capsys: pytest.CaptureFixture) -> None:
        path = project / "forest.yaml"
        path.write_text(
            "treehouses:\n  s:\n    subscribes: a\n    publishes: b\n    script: s.py\n",
            encoding="utf-8",
        )
        probe = AsyncMock(return_value={"openai": True, "local": False})
        with patch("forest.runner.BrainRouter.health_check_all", probe):
            assert runner.main(["check", str(path)]) == 1
        out = capsys.readouterr().out
        assert "local: unreachable" in out
        assert "openai: ok" in out


class TestSecretCommand:
    def test_stores_secret(self, project: Path) -> None:
        with (
            patch("forest.runner.getpass.getpass", return_value="sk-1"),
            patch("forest.runner.secrets.set_secret") as set_secret,
        ):
            assert runner.main(["secret", "OPENAI_API_KEY"]) == 0
        set_secret.assert_called_once_with("OPENAI_API_KEY", "sk-1")

    def test_empty_value_not_stored(self, project: Path) -> None:
        with (
            patch("forest.runner.getpass.getpass", return_value=""),
            patch("forest.runner.secrets.set_secret") as set_secret,
        ):
            assert runner.main(["secret", "OPENAI_API_KEY"]) == 1
        set_secret.assert_not_called()
