"""Forest: composes River, routing table, executors and Dispatcher; owns hot reload."""

import asyncio
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from forest.config import ForestConfig, load_forest_config
from forest.dispatch import DedupWindow, Dispatcher
from forest.errors import ConfigError
from forest.events.models import EventEnvelope
from forest.events.river import JournalRiver
from forest.llm.router import BrainRouter
from forest.routing.table import RoutingTable, RoutingTableRef
from forest.settings import get_setting

logger = logging.getLogger(__name__)


def build_river(project_root: Path, settings: dict[str, Any]) -> JournalRiver:
    cfg = settings.get("river", {})
    return JournalRiver(
        db_path=project_root / cfg.get("db_path", "data/river.db"),
        poll_interval=float(cfg.get("poll_interval", 1.0)),
        batch_size=int(cfg.get("batch_size", 16)),
        visibility_timeout=float(cfg.get("visibility_timeout", 60.0)),
        busy_timeout=int(cfg.get("busy_timeout", 5000)),
    )


def build_dispatcher(
    river: JournalRiver, routing: RoutingTableRef, settings: dict[str, Any]
) -> Dispatcher:
    cfg = settings.get("dispatcher", {})
    return Dispatcher(
        river,
        routing,
        group=str(cfg.get("group", "forest")),
        dedup=DedupWindow(
            ttl=float(cfg.get("dedup_ttl", 3600.0)),
            max_entries=int(cfg.get("dedup_max_entries", 100_000)),
        ),
        subject_concurrency=int(cfg.get("subject_concurrency", 1)),
        subject_limits=cfg.get("subject_limits") or {},
        retry_base=float(cfg.get("retry_base", 1.0)),
        retry_max_delay=float(cfg.get("retry_max_delay", 60.0)),
        max_hops=int(cfg.get("max_hops", 16)),
        visibility_timeout=river.visibility_timeout,
        lane_idle_timeout=float(cfg.get("lane_idle_timeout", 30.0)),
        max_in_flight=int(cfg.get("max_in_flight", 1000)),
    )


class Forest:
    """One running engine: a River consumer group plus the live routing table."""

    def __init__(
        self,
        river: JournalRiver,
        brains: BrainRouter,
        settings: dict[str, Any],
        config_path: Path | None = None,
    ) -> None:
        self.river = river
        self.brains = brains
        self.routing = RoutingTableRef()
        self.dispatcher = build_dispatcher(river, self.routing, settings)
        self._settings = settings
        self._config_path = config_path
        self._config_mtime: float | None = None
        self._reload_interval = float(get_setting(settings, "forest.reload_interval", 5.0) or 0)
        self._watch_task: asyncio.Task[None] | None = None

    def build_table(self, config: ForestConfig) -> RoutingTable:
        """Validate config into a new generation without installing it. Raises ConfigError."""
        s = self._settings
        return RoutingTable.load(
            config,
            self.brains,
            generation=self.routing.next_generation(),
            max_attempts=int(get_setting(s, "dispatcher.max_attempts", 3)),
            treehouse_timeout=float(get_setting(s, "treehouse.timeout", 10.0)),
            nim_timeout=float(get_setting(s, "nim.timeout", 60.0)),
            reparse_retries=int(get_setting(s, "nim.reparse_retries", 0)),
            python=get_setting(s, "treehouse.python"),
        )

    def load(self, config: ForestConfig) -> RoutingTable:
        """Build and install a new generation. On ConfigError the old one stays live."""
        table = self.build_table(config)
        self.routing.swap(table)
        return table

    def load_file(self, path: Path | None = None) -> RoutingTable:
        """Load forest.yaml. Raises ConfigError for any invalid configuration."""
        path = path or self._config_path
        if path is None:
            raise ConfigError("no forest configuration path set")
        try:
            mtime = path.stat().st_mtime
            config = load_forest_config(path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            raise ConfigError(f"{path}: {e}") from e
        table = self.load(config)
        self._config_path = path
        self._config_mtime = mtime
        return table

    def reload(self) -> bool:
        """Try to load a new generation from the config file. Returns True on swap."""
        try:
            self.load_file()
        except ConfigError as e:
            logger.error(
                "Forest: reload rejected, keeping generation %d: %s", self.routing.generation, e
            )
            return False
        return True

    async def publish(
        self,
        subject: str,
        payload: dict,
        source: str = "source",
        correlation_id: str | None = None,
    ) -> EventEnvelope:
        """Ingest a root event from a Source."""
        event = EventEnvelope.create(subject, payload, source=source, correlation_id=correlation_id)
        await self.river.publish(event)
        return event

    async def start(self) -> None:
        await self.river.recover(self.dispatcher.group)
        await self.dispatcher.start()
        if self._config_path and self._reload_interval > 0:
            self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info("Forest started (generation %d)", self.routing.generation)

    async def stop(self) -> None:
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Forest: config watcher had failed")
            self._watch_task = None
        await self.dispatcher.stop()
        await self.river.close()
        logger.info("Forest stopped")

    async def _watch_loop(self) -> None:
        """Poll the config file's mtime; a change builds a new generation."""
        while True:
            await asyncio.sleep(self._reload_interval)
            if self._config_path is None:
                continue
            try:
                mtime = self._config_path.stat().st_mtime
            except OSError as e:
                logger.warning("Forest: cannot stat %s: %s", self._config_path, e)
                continue
            if self._config_mtime is not None and mtime == self._config_mtime:
                continue
            logger.info("Forest: %s changed, reloading", self._config_path)
            try:
                swapped = self.reload()
            except Exception:
                logger.exception("Forest: reload of %s failed", self._config_path)
                swapped = False
            if not swapped:
                self._config_mtime = mtime
