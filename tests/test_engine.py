"""End-to-end tests for Forest: lead pipeline, causation chain, hot reload."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from forest.engine import Forest
from forest.errors import ConfigError
from forest.events.river import JournalRiver
from forest.events.topics import SystemSubjects
from forest.llm import BrainRouter
from forest.settings import get_default_settings

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"

SCRIPT = "def process(x):\n    return {'id': x['id'], 'seen': True}\n"


def _settings(**dispatcher) -> dict:
    settings = get_default_settings()
    settings["dispatcher"].update({"retry_base": 0.01, "retry_max_delay": 0.05, **dispatcher})
    settings["forest"]["reload_interval"] = 0.05
    return settings


def _brains(answer: str = "YES") -> tuple[BrainRouter, AsyncMock]:
    brain = AsyncMock()
    brain.ask.return_value = answer
    router = BrainRouter(settings={}, secrets_getter=lambda _name: None)
    router.register_brain("default", brain)
    return router, brain


def _write_config(path: Path, body: str, mtime: float | None = None) -> None:
    path.write_text(body, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))


class TestLeadPipeline:
    """contact.created -> TreeHouse -> lead.scored -> Nim -> lead.qualified."""

    async def test_pipeline_with_causation_chain(
        self, river: JournalRiver, db_path: Path, wait_until
    ) -> None:
        brains, brain = _brains("YES")
        forest = Forest(river, brains, _settings(), EXAMPLES / "forest.yaml")
        table = forest.load_file()
        assert table.generation == 1
        await forest.start()
        try:
            root = await forest.publish(
                "contact.created",
                {
                    "id": "c-1",
                    "email": "ceo@acme.com",
                    "company_size": 600,
                    "title": "CEO",
                    "industry": "technology",
                },
            )

            async def qualified() -> bool:
                return bool(await river.journal.fetch_by_subject("lead.qualified"))

            await wait_until(qualified, timeout=15.0)
        finally:
            await forest.stop()

        reopened = JournalRiver(db_path)
        try:
            (scored,) = await reopened.journal.fetch_by_subject("lead.scored")
            (decision,) = await reopened.journal.fetch_by_subject("lead.qualified")
            assert await reopened.journal.fetch_by_subject(SystemSubjects.DEAD_LETTER) == []
        finally:
            await reopened.close()

        assert scored.payload == {
            "contact_id": "c-1",
            "email": "ceo@acme.com",
            "score": 105,
            "signals": ["enterprise", "executive", "target_industry"],
        }
        assert scored.causation_id == root.id
        assert scored.source == "treehouse:scorer"
        assert decision.payload == {"qualified": True}
        assert decision.causation_id == scored.id
        assert decision.source == "nim:qualifier"
        assert {root.correlation_id, scored.correlation_id, decision.correlation_id} == {root.id}
        assert decision.hops == 2

        prompt = brain.ask.await_args.args[0]
        assert "Lead ceo@acme.com scored 105 (signals: enterprise, executive, target_industry)." in prompt
        assert prompt.rstrip().endswith("Score: 105. Pursue? YES/NO.")

    async def test_unparseable_decision_dead_lettered(
        self, river: JournalRiver, db_path: Path, wait_until
    ) -> None:
        brains, brain = _brains("maybe later")
        forest = Forest(river, brains, _settings(), EXAMPLES / "forest.yaml")
        forest.load_file()
        await forest.start()
        try:
            await forest.publish("contact.created", {"id": "c-2", "email": "x@gmail.com"})

            async def dead_lettered() -> bool:
                return bool(await river.journal.fetch_by_subject(SystemSubjects.DEAD_LETTER))

            await wait_until(dead_lettered, timeout=15.0)
        finally:
            await forest.stop()

        reopened = JournalRiver(db_path)
        try:
            (dlq,) = await reopened.journal.fetch_by_subject(SystemSubjects.DEAD_LETTER)
            assert await reopened.journal.fetch_by_subject("lead.qualified") == []
        finally:
            await reopened.close()
        assert dlq.payload["binding"] == "qualifier"
        assert dlq.payload["kind"] == "decision"
        assert dlq.payload["detail"]["raw_response"] == "maybe later"
        assert dlq.payload["detail"]["reparse_attempts"] == 1
        # reparse_retries: 1 in the example config
        assert brain.ask.await_count == 2


class TestForestConfigLoading:
    """load_file and hot reload."""

    async def test_missing_file_is_config_error(self, river: JournalRiver, tmp_path: Path) -> None:
        brains, _ = _brains()
        forest = Forest(river, brains, _settings())
        with pytest.raises(ConfigError):
            forest.load_file(tmp_path / "absent.yaml")
        assert forest.routing.generation == 0

    async def test_invalid_yaml_is_config_error(self, river: JournalRiver, tmp_path: Path) -> None:
        path = tmp_path / "forest.yaml"
        _write_config(path, "treehouses: [")
        brains, _ = _brains()
        with pytest.raises(ConfigError):
            Forest(river, brains, _settings()).load_file(path)

    async def test_hot_reload_keeps_generation_on_error(
        self, river: JournalRiver, tmp_path: Path, wait_until
    ) -> None:
        (tmp_path / "s.py").write_text(SCRIPT, encoding="utf-8")
        path = tmp_path / "forest.yaml"
        _write_config(
            path,
            "treehouses:\n  a:\n    subscribes: in.a\n    publishes: out.a\n    script: s.py\n",
            mtime=1_000_000,
        )
        brains, _ = _brains()
        forest = Forest(river, brains, _settings(), path)
        forest.load_file()
        await forest.start()
        try:
            # Self-triggering binding: rejected, generation 1 stays live
            _write_config(
                path,
                "treehouses:\n  a:\n    subscribes: in.a\n    publishes: in.a\n    script: s.py\n",
                mtime=1_000_100,
            )
            await wait_until(lambda: forest._config_mtime == 1_000_100)
            assert forest.routing.generation == 1
            assert [r.binding.publishes for r in forest.routing.current.routes] == ["out.a"]

            _write_config(
                path,
                "treehouses:\n"
                "  a:\n    subscribes: in.a\n    publishes: out.a\n    script: s.py\n"
                "  b:\n    subscribes: in.b\n    publishes: out.b\n    script: s.py\n",
                mtime=1_000_200,
            )
            await wait_until(lambda: forest.routing.generation == 2)

            event = await forest.publish("in.b", {"id": 1})

            async def handled() -> bool:
                stored = await river.journal.fetch_by_subject("out.b")
                return any(e.causation_id == event.id for e in stored)

            await wait_until(handled, timeout=10.0)
        finally:
            await forest.stop()

    async def test_reload_with_undecodable_prompt(self, river: JournalRiver, tmp_path: Path) -> None:
        (tmp_path / "s.py").write_text(SCRIPT, encoding="utf-8")
        (tmp_path / "p.md").write_bytes(b"Score: {{.score}} \xff\xfe")
        path = tmp_path / "forest.yaml"
        _write_config(
            path, "treehouses:\n  a:\n    subscribes: in.a\n    publishes: out.a\n    script: s.py\n"
        )
        brains, _ = _brains()
        forest = Forest(river, brains, _settings(), path)
        forest.load_file()
        _write_config(
            path, "nims:\n  n:\n    subscribes: in.n\n    publishes: out.n\n    prompt: p.md\n"
        )
        assert forest.reload() is False
        assert forest.routing.generation == 1
        assert [r.binding.name for r in forest.routing.current.routes] == ["a"]

    async def test_watcher_survives_failed_reload(
        self, river: JournalRiver, tmp_path: Path, wait_until
    ) -> None:
        (tmp_path / "s.py").write_text(SCRIPT, encoding="utf-8")
        path = tmp_path / "forest.yaml"
        body = "treehouses:\n  a:\n    subscribes: in.a\n    publishes: out.a\n    script: s.py\n"
        _write_config(path, body, mtime=2_000_000)
        brains, _ = _brains()
        forest = Forest(river, brains, _settings(), path)
        forest.load_file()
        await forest.start()
        try:
            with patch.object(forest, "reload", side_effect=RuntimeError("boom")):
                _write_config(path, body, mtime=2_000_100)
                await wait_until(lambda: forest._config_mtime == 2_000_100)
            assert forest.routing.generation == 1
            assert not forest._watch_task.done()

            _write_config(path, body, mtime=2_000_200)
            await wait_until(lambda: forest.routing.generation == 2)
        finally:
            await forest.stop()
        assert forest._watch_task is None
