"""Entry point for the forest process.

    python -m forest [run] [forest.yaml]
    python -m forest check [forest.yaml]
    python -m forest publish <subject> '<json payload>'
    python -m forest secret <NAME>
"""

import asyncio
import getpass
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from keyring.errors import KeyringError

from forest import secrets
from forest.config_check import is_configured
from forest.engine import Forest, build_river
from forest.errors import ConfigError
from forest.events.models import EventEnvelope
from forest.llm import BrainRouter
from forest.logging_config import setup_logging
from forest.settings import get_setting, load_settings

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _config_path(settings: dict[str, Any], arg: str | None) -> Path:
    rel = arg or get_setting(settings, "forest.config", "forest.yaml")
    path = Path(rel)
    return path if path.is_absolute() else (Path.cwd() / path)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass


async def run_async(config_path: Path) -> int:
    """Bootstrap: settings -> logging -> river -> brains -> routing -> dispatcher -> wait."""
    settings = load_settings()
    setup_logging(_PROJECT_ROOT, settings)
    brains = BrainRouter(settings=settings, secrets_getter=secrets.get_secret)
    engine = Forest(build_river(_PROJECT_ROOT, settings), brains, settings, config_path)
    try:
        engine.load_file(config_path)
    except ConfigError as e:
        logger.error("Forest: invalid configuration: %s", e)
        await engine.river.close()
        return 1
    for binding in engine.routing.describe():
        logger.info(
            "Forest: %s %s: %s -> %s",
            binding["kind"],
            binding["name"],
            binding["subscribes"],
            binding["publishes"],
        )
    stop = asyncio.Event()
    _install_signal_handlers(stop)
    await engine.start()
    try:
        await stop.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await engine.stop()
    return 0


async def publish_async(subject: str, payload: dict) -> EventEnvelope:
    """Publish one root event onto the River and exit."""
    settings = load_settings()
    river = build_river(_PROJECT_ROOT, settings)
    try:
        event = EventEnvelope.create(subject, payload, source="cli")
        await river.publish(event)
        return event
    finally:
        await river.close()


async def check_providers(settings: dict[str, Any]) -> bool:
    """Probe every configured provider. Prints one line per provider."""
    brains = BrainRouter(settings=settings, secrets_getter=secrets.get_secret)
    results = await brains.health_check_all()
    for provider_id, ok in sorted(results.items()):
        print(f"{provider_id}: {'ok' if ok else 'unreachable'}")
    return all(results.values())


def _usage() -> int:
    print(__doc__.strip(), file=sys.stderr)
    return 2


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry for the forest process."""
    load_dotenv(_PROJECT_ROOT / ".env")
    args = list(sys.argv[1:] if argv is None else argv)
    command = args.pop(0) if args and args[0] in ("run", "check", "publish", "secret") else "run"

    if command == "publish":
        if len(args) != 2:
            return _usage()
        try:
            payload = json.loads(args[1])
        except json.JSONDecodeError as e:
            print(f"invalid JSON payload: {e}", file=sys.stderr)
            return 2
        if not isinstance(payload, dict):
            print("payload must be a JSON object", file=sys.stderr)
            return 2
        event = asyncio.run(publish_async(args[0], payload))
        print(json.dumps(event.to_dict(), ensure_ascii=False))
        return 0

    if command == "secret":
        if len(args) != 1:
            return _usage()
        value = getpass.getpass(f"{args[0]}: ")
        if not value:
            print("empty value, nothing stored", file=sys.stderr)
            return 1
        try:
            secrets.set_secret(args[0], value)
        except KeyringError as e:
            print(f"keyring unavailable: {e}", file=sys.stderr)
            return 1
        return 0

    settings = load_settings()
    config_path = _config_path(settings, args[0] if args else None)

    if command == "check":
        ok, reason = is_configured(config_path, settings, _PROJECT_ROOT / ".env")
        print(reason)
        if not ok:
            return 1
        return 0 if asyncio.run(check_providers(settings)) else 1

    try:
        return asyncio.run(run_async(config_path))
    except KeyboardInterrupt:
        return 0


__all__ = ["main"]
