"""Child-process host for TreeHouse scripts: python -I script_host.py <script>.

Reads the event payload as JSON on stdin, calls process(input) from the
script and writes one JSON result line on stdout:

    {"status": "ok", "outputs": [...]}
    {"status": "retry" | "reject", "error": "..."}

Anything the script prints goes to stderr.
"""

import json
import sys
import traceback
from pathlib import Path
from typing import Any


class Retry(Exception):
    """Raised by a script to classify its failure as transient."""


def contains(value: Any, sub: Any) -> bool:
    return str(sub) in str(value)


def log(message: Any) -> None:
    print(f"[script] {message}", file=sys.stderr, flush=True)


def _normalize(result: Any) -> list[dict]:
    if result is None:
        return []
    if isinstance(result, dict):
        return [result]
    if isinstance(result, (list, tuple)) and all(isinstance(r, dict) for r in result):
        return list(result)
    raise TypeError(
        f"process() must return a dict, a list of dicts or None, got {type(result).__name__}"
    )


def run_script(script_path: Path, payload: dict) -> dict[str, Any]:
    """Execute the script's process(payload). Returns the result document."""
    source = script_path.read_text(encoding="utf-8")
    namespace: dict[str, Any] = {
        "__name__": "__treehouse__",
        "__file__": str(script_path),
        "Retry": Retry,
        "contains": contains,
        "log": log,
    }
    try:
        exec(compile(source, str(script_path), "exec"), namespace)
        process = namespace.get("process")
        if not callable(process):
            return {"status": "reject", "error": "process function not defined in script"}
        outputs = _normalize(process(payload))
        json.dumps(outputs)
    except Retry as e:
        return {"status": "retry", "error": str(e) or "script requested retry"}
    except Exception as e:
        traceback.print_exc(file=sys.stderr)
        return {"status": "reject", "error": f"{type(e).__name__}: {e}"}
    return {"status": "ok", "outputs": outputs}


def main() -> int:
    if len(sys.argv) != 2:
        print("usage: script_host <script>", file=sys.stderr)
        return 2
    try:
        payload = json.loads(sys.stdin.read() or "{}")
    except json.JSONDecodeError as e:
        result: dict[str, Any] = {"status": "reject", "error": f"invalid payload JSON: {e}"}
    else:
        real_stdout = sys.stdout
        sys.stdout = sys.stderr
        try:
            result = run_script(Path(sys.argv[1]), payload)
        finally:
            sys.stdout = real_stdout
    sys.stdout.write(json.dumps(result, sort_keys=True, ensure_ascii=False) + "\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
