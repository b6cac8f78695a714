"""Event primitives emitted by watch sources and consumed by the watcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union


@dataclass(frozen=True)
class ResourceUpsert:
    """A resource was added or modified.

    ``resource`` is the raw object as delivered by the control plane; it is
    only turned into an :class:`~ippool_mirror.models.IPPool` when a snapshot
    is read.
    """

    key: str
    resource: Mapping[str, Any]


@dataclass(frozen=True)
class ResourceDelete:
    """A resource was removed."""

    key: str


@dataclass(frozen=True)
class ResourceResync:
    """Full listing of the collection; replaces everything cached so far."""

    resources: Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class WatchError:
    """The list/watch stream failed (connection loss, decode failure)."""

    error: BaseException


WatchEvent = Union[ResourceUpsert, ResourceDelete, ResourceResync, WatchError]
