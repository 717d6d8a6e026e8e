"""Nim: decision executor backed by an inference provider.

Prompt rendering fails fast on a missing field, before any provider call.
Raw model text never leaves this module without passing the response contract.
"""

import asyncio
import logging
import re
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateError, UndefinedError, select_autoescape

from forest.errors import ParseRejection, TransientFailure
from forest.events.models import EventEnvelope
from forest.execution.base import emit_outputs
from forest.execution.contracts import ResponseContract
from forest.execution.outcome import Failed, Outcome, Rejected, Timeout
from forest.llm.protocol import Brain

logger = logging.getLogger(__name__)

# Go-style field reference {{.score}} / {{ .lead.score }}
_DOT_FIELD_RE = re.compile(r"\{\{\s*\.([A-Za-z_][\w.]*)\s*\}\}")

_env = Environment(
    autoescape=select_autoescape(enabled_extensions=(), default_for_string=False),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def compile_prompt(source: str) -> Template:
    """Compile a prompt template. Raises jinja2.TemplateSyntaxError."""
    return _env.from_string(_DOT_FIELD_RE.sub(r"{{ \1 }}", source))


class NimExecutor:
    """Renders a prompt from the payload, asks the brain, applies the contract."""

    kind = "decision"

    def __init__(
        self,
        name: str,
        template: Template,
        publishes: str,
        brain: Brain,
        contract: ResponseContract,
        timeout: float = 60.0,
        reparse_retries: int = 0,
    ) -> None:
        self.name = name
        self.template = template
        self.publishes = publishes
        self.brain = brain
        self.contract = contract
        self.timeout = timeout
        self.reparse_retries = reparse_retries

    @property
    def source(self) -> str:
        return f"nim:{self.name}"

    def render(self, payload: dict[str, Any]) -> str:
        return self.template.render(payload)

    async def run(self, event: EventEnvelope) -> Outcome:
        try:
            prompt = self.render(event.payload)
        except UndefinedError as e:
            return Rejected(f"prompt references a missing field: {e}")
        except TemplateError as e:
            return Rejected(f"prompt rendering failed: {e}")

        current = prompt
        reparse = 0
        while True:
            try:
                raw = await asyncio.wait_for(self.brain.ask(current), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Nim %s: brain exceeded %.1fs for event %s", self.name, self.timeout, event.id
                )
                return Timeout(f"brain exceeded {self.timeout}s")
            except TransientFailure as e:
                return Failed(str(e))
            except Exception as e:
                logger.warning("Nim %s: brain call failed for event %s: %s", self.name, event.id, e)
                return Failed(f"provider error: {e}")

            try:
                output = self.contract.parse(raw)
            except ParseRejection as e:
                if reparse < self.reparse_retries:
                    reparse += 1
                    logger.info(
                        "Nim %s: response did not match contract, re-prompting (%d/%d)",
                        self.name,
                        reparse,
                        self.reparse_retries,
                    )
                    current = (
                        f"{prompt}\n\nYour previous answer was: {raw.strip()!r}. "
                        f"{self.contract.reprompt_hint()}"
                    )
                    continue
                return Rejected(
                    str(e),
                    {"raw_response": e.raw_response, "reparse_attempts": reparse},
                )
            return emit_outputs(event, self.publishes, [output], self.source)
