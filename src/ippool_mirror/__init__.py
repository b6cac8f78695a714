"""IP pool mirroring building blocks.

This package holds the pieces of the mirror that do not depend on a
particular control plane client or HTTP server:

* :mod:`ippool_mirror.extractor` turns raw ``ippools`` resources into typed
  :class:`~ippool_mirror.models.IPPool` values and reports exactly which
  field is missing when it cannot;
* :mod:`ippool_mirror.events` defines the events a watch source feeds into
  the resource cache;
* :mod:`ippool_mirror.poster` periodically ships the cached pools to the
  downstream consumer; and
* :mod:`ippool_mirror.health` carries per-component health flags and the
  registry that aggregates them into one liveness answer.

The runtime wiring (Kubernetes watch, HTTP server, lifecycle) lives in
:mod:`ippool_agent`.
"""

from .extractor import (  # noqa: F401
    IncompleteResourceError,
    MalformedResourceError,
    ResourceError,
    SnapshotError,
    extract,
)
from .health import HealthFlag, HealthRegistry, HealthReporter  # noqa: F401
from .models import EndPolicy, IPPool  # noqa: F401
from .poster import Poster, UnexpectedResponseError  # noqa: F401

__all__ = [
    "EndPolicy",
    "HealthFlag",
    "HealthRegistry",
    "HealthReporter",
    "IPPool",
    "IncompleteResourceError",
    "MalformedResourceError",
    "Poster",
    "ResourceError",
    "SnapshotError",
    "UnexpectedResponseError",
    "extract",
]
