"""Routing table: subject -> ordered routes, one immutable table per configuration generation."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from jinja2 import TemplateSyntaxError

from forest.config import ForestConfig
from forest.errors import ConfigError
from forest.events.subjects import (
    SubjectError,
    matches,
    overlaps,
    template_as_pattern,
    validate_pattern,
    validate_template,
)
from forest.execution.base import Executor
from forest.execution.contracts import ResponseContract
from forest.execution.nim import NimExecutor, compile_prompt
from forest.execution.treehouse import TreeHouseExecutor, check_script
from forest.llm.router import BrainRouter

logger = logging.getLogger(__name__)


class BindingKind(str, Enum):
    DETERMINISTIC = "deterministic"
    DECISION = "decision"


@dataclass(frozen=True)
class Binding:
    """Declarative rule: subscribed pattern -> handler -> published subject template."""

    name: str
    subscribes: str
    publishes: str
    kind: BindingKind
    handler_ref: str
    reentrant: bool = False
    max_attempts: int = 3


@dataclass(frozen=True)
class Route:
    """A binding with the executor resolved for it at load time."""

    binding: Binding
    executor: Executor


def _check_subjects(binding: Binding) -> None:
    try:
        validate_pattern(binding.subscribes)
        validate_template(binding.publishes)
    except SubjectError as e:
        raise ConfigError(f"{binding.kind.value} binding {binding.name!r}: {e}") from e
    if not binding.reentrant and overlaps(
        binding.subscribes, template_as_pattern(binding.publishes)
    ):
        raise ConfigError(
            f"binding {binding.name!r} publishes {binding.publishes!r} which matches its own "
            f"subscription {binding.subscribes!r}; mark it reentrant to allow self-triggering"
        )


class RoutingTable:
    """Immutable snapshot of routes. Never mutated after load."""

    def __init__(self, routes: tuple[Route, ...], generation: int = 0) -> None:
        self._routes = routes
        self.generation = generation

    @property
    def routes(self) -> tuple[Route, ...]:
        return self._routes

    @property
    def bindings(self) -> tuple[Binding, ...]:
        return tuple(r.binding for r in self._routes)

    def resolve(self, subject: str) -> tuple[Route, ...]:
        """Routes whose subscription matches subject, in configuration order."""
        return tuple(r for r in self._routes if matches(r.binding.subscribes, subject))

    @classmethod
    def load(
        cls,
        config: ForestConfig,
        brains: BrainRouter,
        *,
        generation: int = 0,
        max_attempts: int = 3,
        treehouse_timeout: float = 10.0,
        nim_timeout: float = 60.0,
        reparse_retries: int = 0,
        python: str | None = None,
    ) -> "RoutingTable":
        """Validate the snapshot and build executors. Raises ConfigError."""
        duplicates = set(config.treehouses) & set(config.nims)
        if duplicates:
            raise ConfigError(f"binding names used by both treehouses and nims: {sorted(duplicates)}")

        routes: list[Route] = []
        for name, th in config.treehouses.items():
            binding = Binding(
                name=name,
                subscribes=th.subscribes,
                publishes=th.publishes,
                kind=BindingKind.DETERMINISTIC,
                handler_ref=th.script,
                reentrant=th.reentrant,
                max_attempts=th.max_attempts or max_attempts,
            )
            _check_subjects(binding)
            script_path = config.resolve_path(th.script)
            try:
                check_script(script_path)
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigError(f"treehouse {name!r}: cannot read script {script_path}: {e}") from e
            except (SyntaxError, ValueError) as e:
                raise ConfigError(f"treehouse {name!r}: script {script_path} does not compile: {e}") from e
            executor = TreeHouseExecutor(
                name,
                script_path,
                th.publishes,
                timeout=th.timeout or treehouse_timeout,
                python=python,
            )
            routes.append(Route(binding, executor))

        for name, nim in config.nims.items():
            binding = Binding(
                name=name,
                subscribes=nim.subscribes,
                publishes=nim.publishes,
                kind=BindingKind.DECISION,
                handler_ref=nim.prompt,
                reentrant=nim.reentrant,
                max_attempts=nim.max_attempts or max_attempts,
            )
            _check_subjects(binding)
            prompt_path = config.resolve_path(nim.prompt)
            try:
                template = compile_prompt(prompt_path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigError(f"nim {name!r}: cannot read prompt {prompt_path}: {e}") from e
            except TemplateSyntaxError as e:
                raise ConfigError(f"nim {name!r}: prompt {prompt_path} does not parse: {e}") from e
            if not brains.has_brain(nim.brain):
                raise ConfigError(f"nim {name!r}: unknown brain {nim.brain!r}")
            try:
                brain = brains.get_brain(nim.brain)
            except KeyError as e:
                raise ConfigError(f"nim {name!r}: brain {nim.brain!r} cannot be built: {e}") from e
            executor = NimExecutor(
                name,
                template,
                nim.publishes,
                brain=brain,
                contract=ResponseContract(nim.contract),
                timeout=nim.timeout or nim_timeout,
                reparse_retries=(
                    nim.reparse_retries if nim.reparse_retries is not None else reparse_retries
                ),
            )
            routes.append(Route(binding, executor))

        logger.info(
            "Routing table generation %d: %d treehouses, %d nims",
            generation,
            len(config.treehouses),
            len(config.nims),
        )
        return cls(tuple(routes), generation=generation)


class RoutingTableRef:
    """Holds the live table. Readers see the old or the new table, never a mix."""

    def __init__(self, table: RoutingTable | None = None) -> None:
        self._table = table or RoutingTable(())

    @property
    def current(self) -> RoutingTable:
        return self._table

    @property
    def generation(self) -> int:
        return self._table.generation

    def next_generation(self) -> int:
        return self._table.generation + 1

    def swap(self, table: RoutingTable) -> RoutingTable:
        """Install table; returns the previous one."""
        previous = self._table
        self._table = table
        logger.info(
            "Routing table swapped: generation %d -> %d", previous.generation, table.generation
        )
        return previous

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "name": b.name,
                "kind": b.kind.value,
                "subscribes": b.subscribes,
                "publishes": b.publishes,
            }
            for b in self._table.bindings
        ]
