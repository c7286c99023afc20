"""Cross-resource references.

A reference is written inside an attribute value as ``${<kind>.<name>.<output>}``
where ``<output>`` may be a dotted path into the referenced resource's
outputs.  A string that is exactly one reference resolves to the referenced
value with its type preserved; references embedded in a longer string are
interpolated as text.  ``$${...}`` escapes a literal ``${...}``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

_KIND_PATTERN: Final = r"[a-z][a-z0-9_]*"
_NAME_PATTERN: Final = r"[A-Za-z0-9_-]+"

ADDRESS_RE: Final = re.compile(rf"^({_KIND_PATTERN})\.({_NAME_PATTERN})$")
_REF_RE: Final = re.compile(
    rf"(?<!\$)\$\{{({_KIND_PATTERN}\.{_NAME_PATTERN})\.([A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)*)\}}"
)


class _Unknown:
    """Placeholder for a value that is only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    __str__ = __repr__


UNKNOWN: Final = _Unknown()
_MISSING: Final = object()


@dataclass(frozen=True, slots=True)
class Reference:
    """A reference to one output of another resource."""

    address: str
    output: str

    def __str__(self) -> str:
        return f"${{{self.address}.{self.output}}}"


def ref(address: str, output: str) -> str:
    """Build the reference string for ``address``'s ``output``.

    >>> ref("iam_role.cluster", "arn")
    '${iam_role.cluster.arn}'
    """
    parse_address(address)
    return str(Reference(address, output))


def parse_address(address: str) -> tuple[str, str]:
    """Split ``kind.name`` into its parts; raise ``ValueError`` if malformed."""
    m = ADDRESS_RE.match(address)
    if m is None:
        raise ValueError(f"Invalid resource address: {address!r} (expected '<kind>.<name>')")
    return m.group(1), m.group(2)


def find_references(value: Any) -> list[Reference]:
    """Collect references from a (nested) attribute value, in first-seen order."""
    found: list[Reference] = []

    def _walk(v: Any) -> None:
        if isinstance(v, str):
            for m in _REF_RE.finditer(v):
                r = Reference(m.group(1), m.group(2))
                if r not in found:
                    found.append(r)
        elif isinstance(v, dict):
            for item in v.values():
                _walk(item)
        elif isinstance(v, (list, tuple)):
            for item in v:
                _walk(item)

    _walk(value)
    return found


def lookup_output(outputs: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path in an outputs mapping, or ``UNKNOWN`` if absent."""
    current: Any = outputs
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return UNKNOWN
        current = current[segment]
    return current


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    return False


def render_unknowns(value: Any) -> Any:
    """Replace ``UNKNOWN`` placeholders with their display string (JSON-safe)."""
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if isinstance(value, dict):
        return {k: render_unknowns(v) for k, v in value.items()}
    if isinstance(value, list):
        return [render_unknowns(v) for v in value]
    return value


def resolve_references(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Substitute references in *value*, recursively.

    *lookup* returns the referenced value, or ``UNKNOWN`` when it is not known
    yet.  An interpolated string containing an unknown part is ``UNKNOWN`` as
    a whole.
    """
    if isinstance(value, str):
        whole = _REF_RE.fullmatch(value)
        if whole is not None:
            return lookup(Reference(whole.group(1), whole.group(2)))

        unknown = False

        def _sub(m: re.Match[str]) -> str:
            nonlocal unknown
            resolved = lookup(Reference(m.group(1), m.group(2)))
            if resolved is UNKNOWN:
                unknown = True
                return ""
            return str(resolved)

        text = _REF_RE.sub(_sub, value)
        if unknown:
            return UNKNOWN
        return text.replace("$${", "${")
    if isinstance(value, dict):
        return {k: resolve_references(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_references(v, lookup) for v in value]
    return value
