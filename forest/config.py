"""Forest configuration snapshot: Pydantic models and YAML loader.

Shape checks only. Semantic checks (subjects, self-triggering, handler
references) happen in RoutingTable.load.
"""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator


class ContractConfig(BaseModel):
    """Response contract applied to a Nim's raw answer."""

    type: Literal["choice", "json", "freeform"] = "freeform"
    # choice: accepted answer -> outbound payload
    choices: dict[str, dict[str, Any]] = Field(default_factory=dict)
    # json: keys that must be present, optional field -> type name checks
    required: list[str] = Field(default_factory=list)
    field_types: dict[str, Literal["str", "int", "float", "bool", "list", "dict"]] = Field(
        default_factory=dict
    )

    @model_validator(mode="after")
    def _validate_choices(self) -> "ContractConfig":
        if self.type == "choice" and not self.choices:
            raise ValueError("choice contract requires at least one entry in choices")
        return self


class TreeHouseConfig(BaseModel):
    """Deterministic script handler."""

    subscribes: str
    publishes: str
    script: str
    reentrant: bool = False
    timeout: float | None = None
    max_attempts: int | None = Field(default=None, ge=1)


class NimConfig(BaseModel):
    """Model-backed decision handler."""

    subscribes: str
    publishes: str
    prompt: str
    brain: str = "default"
    contract: ContractConfig = Field(default_factory=ContractConfig)
    reparse_retries: int | None = Field(default=None, ge=0)
    reentrant: bool = False
    timeout: float | None = None
    max_attempts: int | None = Field(default=None, ge=1)


class ForestConfig(BaseModel):
    """Schema for forest.yaml."""

    treehouses: dict[str, TreeHouseConfig] = Field(default_factory=dict)
    nims: dict[str, NimConfig] = Field(default_factory=dict)
    # Directory used to resolve relative script/prompt paths
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    def resolve_path(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return (self.base_dir / candidate).resolve()


def load_forest_config(path: Path) -> ForestConfig:
    """Read and validate forest.yaml. Raises on invalid YAML or validation error."""
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Forest config must be a YAML object: {path}")
    data["base_dir"] = path.resolve().parent
    return ForestConfig.model_validate(data)
