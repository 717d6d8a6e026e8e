"""Response contracts: the only way raw model text becomes an outbound payload."""

import json
import re
from typing import Any

from forest.config import ContractConfig
from forest.errors import ParseRejection

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_TYPES: dict[str, tuple[type, ...]] = {
    "str": (str,),
    "int": (int,),
    "float": (int, float),
    "bool": (bool,),
    "list": (list,),
    "dict": (dict,),
}


def _normalize_answer(text: str) -> str:
    return text.strip().strip("\"'`").rstrip(".!").strip().lower()


def _load_json_object(text: str) -> dict[str, Any] | None:
    candidates = [text.strip()]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


class ResponseContract:
    """Parses a raw response according to a ContractConfig."""

    def __init__(self, config: ContractConfig) -> None:
        self.config = config
        self._choices = {_normalize_answer(k): v for k, v in config.choices.items()}

    def parse(self, raw: str) -> dict[str, Any]:
        """Return the outbound payload. Raises ParseRejection on mismatch."""
        kind = self.config.type
        if kind == "choice":
            answer = _normalize_answer(raw)
            if answer not in self._choices:
                raise ParseRejection(
                    f"response is not one of {sorted(self.config.choices)}", raw_response=raw
                )
            return dict(self._choices[answer])
        if kind == "json":
            data = _load_json_object(raw)
            if data is None:
                raise ParseRejection("response is not a JSON object", raw_response=raw)
            missing = [k for k in self.config.required if k not in data]
            if missing:
                raise ParseRejection(f"response missing fields {missing}", raw_response=raw)
            for field_name, type_name in self.config.field_types.items():
                if field_name not in data:
                    continue
                value = data[field_name]
                expected = _TYPES[type_name]
                if isinstance(value, bool) and bool not in expected:
                    raise ParseRejection(
                        f"field {field_name!r} must be {type_name}", raw_response=raw
                    )
                if not isinstance(value, expected):
                    raise ParseRejection(
                        f"field {field_name!r} must be {type_name}", raw_response=raw
                    )
            return data
        data = _load_json_object(raw)
        return data if data is not None else {"response": raw}

    def reprompt_hint(self) -> str:
        """Stricter instruction appended to the prompt after a parse failure."""
        kind = self.config.type
        if kind == "choice":
            options = ", ".join(self.config.choices)
            return f"Answer with exactly one of: {options}. Do not add any other text."
        if kind == "json":
            hint = "Respond with a single JSON object and nothing else."
            if self.config.required:
                hint += f" It must contain the keys: {', '.join(self.config.required)}."
            return hint
        return ""
