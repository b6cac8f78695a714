"""Turn raw ``ippools`` resources into :class:`IPPool` values."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from .models import EndPolicy, IPPool, parse_address

POOL_PATH = ("spec", "ipv4Config", "pool")


class ResourceError(ValueError):
    """Base class for resources that cannot be turned into a pool."""

    def __init__(self, name: str, field: str) -> None:
        self.name = name
        self.field = field
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"invalid resource {self.name!r}, field {self.field!r}"


class IncompleteResourceError(ResourceError):
    """A required field is absent from the resource."""

    def __str__(self) -> str:
        return f"incomplete resource, field {self.field!r} missing in {self.name!r}"


class MalformedResourceError(ResourceError):
    """A field is present but holds a value of the wrong type."""

    def __init__(self, name: str, field: str, expected: str) -> None:
        self.expected = expected
        super().__init__(name, field)

    def __str__(self) -> str:
        return (
            f"malformed resource, field {self.field!r} in {self.name!r} "
            f"is not a {self.expected}"
        )


class SnapshotError(Exception):
    """One or more cached resources failed extraction."""

    def __init__(self, errors: Sequence[ResourceError]) -> None:
        self.errors = list(errors)
        detail = "; ".join(str(err) for err in self.errors)
        super().__init__(
            f"{len(self.errors)} resource(s) failed extraction: {detail}"
        )


def _dotted(path: Sequence[str]) -> str:
    return ".".join(path)


def _nested_map(
    obj: Mapping[str, Any], name: str, path: Sequence[str]
) -> Optional[Mapping[str, Any]]:
    current: Any = obj
    for depth, key in enumerate(path):
        if not isinstance(current, Mapping):
            raise MalformedResourceError(name, _dotted(path[:depth]), "mapping")
        if key not in current or current[key] is None:
            return None
        current = current[key]
    if not isinstance(current, Mapping):
        raise MalformedResourceError(name, _dotted(path), "mapping")
    return current


def _nested_string(
    pool: Mapping[str, Any], name: str, key: str
) -> Optional[str]:
    value = pool.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedResourceError(name, _dotted((*POOL_PATH, key)), "string")
    return value


def resource_name(raw: Mapping[str, Any]) -> str:
    """Return the object name, qualified as ``namespace/name`` when namespaced."""

    metadata = raw.get("metadata")
    if not isinstance(metadata, Mapping):
        return ""
    name = metadata.get("name")
    if not isinstance(name, str):
        return ""
    namespace = metadata.get("namespace")
    if isinstance(namespace, str) and namespace:
        return f"{namespace}/{name}"
    return name


def extract(
    raw: Mapping[str, Any], end_policy: EndPolicy = EndPolicy.REQUIRED
) -> IPPool:
    """Build an :class:`IPPool` from ``raw``.

    The name is metadata and may be missing; the address range may not.
    Raises :class:`IncompleteResourceError` naming the dotted path of the
    first missing field, or :class:`MalformedResourceError` when a field on
    that path has the wrong type.
    """

    name = resource_name(raw)

    pool = _nested_map(raw, name, POOL_PATH)
    if pool is None:
        raise IncompleteResourceError(name, _dotted(POOL_PATH))

    start = _nested_string(pool, name, "start")
    if start is None:
        raise IncompleteResourceError(name, _dotted((*POOL_PATH, "start")))

    end = _nested_string(pool, name, "end")
    if end is None and end_policy is EndPolicy.REQUIRED:
        raise IncompleteResourceError(name, _dotted((*POOL_PATH, "end")))

    return IPPool(name=name, start=parse_address(start), end=parse_address(end))
