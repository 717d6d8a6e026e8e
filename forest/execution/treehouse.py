"""TreeHouse: deterministic script executor.

Each run starts a fresh isolated interpreter so a runaway script can be
killed at the hard timeout without cooperation from the script.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

from forest.events.models import EventEnvelope
from forest.execution import script_host
from forest.execution.base import emit_outputs
from forest.execution.outcome import Failed, Outcome, Rejected, Timeout

logger = logging.getLogger(__name__)

_HOST_PATH = Path(script_host.__file__).resolve()


def check_script(path: Path) -> None:
    """Raise OSError or SyntaxError if the script cannot be loaded."""
    source = path.read_text(encoding="utf-8")
    compile(source, str(path), "exec")


class TreeHouseExecutor:
    """Runs process(input) from a Python script against an event payload."""

    kind = "deterministic"

    def __init__(
        self,
        name: str,
        script_path: Path,
        publishes: str,
        timeout: float = 10.0,
        python: str | None = None,
    ) -> None:
        self.name = name
        self.script_path = script_path
        self.publishes = publishes
        self.timeout = timeout
        self._python = python or sys.executable

    @property
    def source(self) -> str:
        return f"treehouse:{self.name}"

    async def run(self, event: EventEnvelope) -> Outcome:
        try:
            stdin = json.dumps(event.payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            return Rejected(f"payload is not JSON-serializable: {e}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self._python,
                "-I",
                str(_HOST_PATH),
                str(self.script_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.script_path.parent),
                env={"PYTHONIOENCODING": "utf-8"},
            )
        except OSError as e:
            return Failed(f"failed to start script runtime: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.warning(
                "TreeHouse %s: script exceeded %.1fs for event %s",
                self.name,
                self.timeout,
                event.id,
            )
            return Timeout(f"script exceeded {self.timeout}s")
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        if stderr:
            for line in stderr.decode("utf-8", errors="replace").splitlines():
                logger.debug("TreeHouse %s: %s", self.name, line)
        return self._interpret(event, proc.returncode, stdout)

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    def _interpret(self, event: EventEnvelope, returncode: int | None, stdout: bytes) -> Outcome:
        lines = stdout.decode("utf-8", errors="replace").strip().splitlines()
        if returncode != 0 or not lines:
            return Failed(f"script runtime exited with code {returncode}")
        try:
            result = json.loads(lines[-1])
        except json.JSONDecodeError:
            return Rejected("script runtime produced malformed output", {"stdout": lines[-1][:500]})

        status = result.get("status")
        if status == "retry":
            return Failed(str(result.get("error", "script requested retry")))
        if status != "ok":
            return Rejected(str(result.get("error", "script failed")))
        return emit_outputs(event, self.publishes, result.get("outputs") or [], self.source)
