"""Subject syntax: dot-separated tokens, `*` for one token, `>` for the rest.

Publish subjects are templates: a token may contain `{field}` placeholders
filled from the handler's output payload.
"""

import re
from typing import Any

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-{}]+$")

SINGLE_WILDCARD = "*"
TAIL_WILDCARD = ">"


class SubjectError(ValueError):
    """Malformed subject, pattern or template."""


def _tokens(subject: str) -> list[str]:
    if not subject or not subject.strip():
        raise SubjectError("subject cannot be empty")
    if subject != subject.strip() or any(c.isspace() for c in subject):
        raise SubjectError(f"subject {subject!r} contains whitespace")
    tokens = subject.split(".")
    if any(not t for t in tokens):
        raise SubjectError(f"subject {subject!r} has an empty token")
    return tokens


def validate_pattern(pattern: str) -> None:
    """Raise SubjectError unless pattern is a valid subscription pattern."""
    tokens = _tokens(pattern)
    for i, token in enumerate(tokens):
        if token == TAIL_WILDCARD:
            if i != len(tokens) - 1:
                raise SubjectError(f"pattern {pattern!r}: '>' must be the last token")
            continue
        if token == SINGLE_WILDCARD:
            continue
        if "{" in token or "}" in token or not _TOKEN_RE.match(token):
            raise SubjectError(f"pattern {pattern!r}: invalid token {token!r}")


def validate_template(template: str) -> None:
    """Raise SubjectError unless template is a valid publish subject template."""
    tokens = _tokens(template)
    for token in tokens:
        if token in (SINGLE_WILDCARD, TAIL_WILDCARD):
            raise SubjectError(f"publish subject {template!r} cannot contain wildcards")
        if not _TOKEN_RE.match(token):
            raise SubjectError(f"publish subject {template!r}: invalid token {token!r}")
        stripped = _PLACEHOLDER_RE.sub("", token)
        if "{" in stripped or "}" in stripped:
            raise SubjectError(f"publish subject {template!r}: unbalanced placeholder in {token!r}")


def matches(pattern: str, subject: str) -> bool:
    """True if subject matches pattern (exact, `*` or trailing `>`)."""
    p_tokens = pattern.split(".")
    s_tokens = subject.split(".")
    for i, p in enumerate(p_tokens):
        if p == TAIL_WILDCARD:
            return len(s_tokens) > i
        if i >= len(s_tokens):
            return False
        if p != SINGLE_WILDCARD and p != s_tokens[i]:
            return False
    return len(p_tokens) == len(s_tokens)


def template_as_pattern(template: str) -> str:
    """Tokens holding placeholders can become anything: treat them as `*`."""
    return ".".join(
        SINGLE_WILDCARD if _PLACEHOLDER_RE.search(t) else t for t in template.split(".")
    )


def overlaps(a: str, b: str) -> bool:
    """True if some concrete subject could match both patterns."""
    a_tokens = a.split(".")
    b_tokens = b.split(".")
    for i in range(max(len(a_tokens), len(b_tokens))):
        ta = a_tokens[i] if i < len(a_tokens) else None
        tb = b_tokens[i] if i < len(b_tokens) else None
        if ta == TAIL_WILDCARD or tb == TAIL_WILDCARD:
            return ta is not None and tb is not None
        if ta is None or tb is None:
            return False
        if ta == SINGLE_WILDCARD or tb == SINGLE_WILDCARD:
            continue
        if ta != tb:
            return False
    return True


def render_subject(template: str, data: dict[str, Any]) -> str:
    """Fill `{field}` placeholders from data. Raises KeyError on a missing or unusable field."""

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in data or data[name] is None:
            raise KeyError(name)
        value = str(data[name])
        if not value or "." in value or any(c.isspace() for c in value):
            raise KeyError(name)
        if SINGLE_WILDCARD in value or TAIL_WILDCARD in value:
            raise KeyError(name)
        return value

    return _PLACEHOLDER_RE.sub(_sub, template)
