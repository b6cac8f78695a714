"""Local cache of ``ippools`` resources fed by a watch source."""

from __future__ import annotations

import logging
from threading import Event, Lock
from typing import Any, Dict, List, Mapping

from ippool_mirror.events import (
    ResourceDelete,
    ResourceResync,
    ResourceUpsert,
    WatchError,
    WatchEvent,
)
from ippool_mirror.extractor import ResourceError, SnapshotError, extract
from ippool_mirror.health import HealthFlag, HealthReporter
from ippool_mirror.models import EndPolicy, IPPool
from ippool_mirror.poster import SnapshotSource

from .base import WatchSource

LOG = logging.getLogger(__name__)

DEFAULT_RESYNC_INTERVAL = 300.0


class ResourceWatcher(HealthReporter, SnapshotSource):
    """Keep the raw resources seen on the watch stream, keyed by object key.

    Only :meth:`handle` mutates the cache.  Resources are stored raw and
    validated when a snapshot is read, so a single broken resource never
    stops the stream from being consumed.
    """

    def __init__(
        self, source: WatchSource, end_policy: EndPolicy = EndPolicy.REQUIRED
    ) -> None:
        self._source = source
        self._end_policy = end_policy
        self._cache: Dict[str, Mapping[str, Any]] = {}
        self._lock = Lock()
        self._healthy = HealthFlag()

    def is_healthy(self) -> bool:
        return bool(self._healthy)

    def run(
        self, stop_event: Event, resync_interval: float = DEFAULT_RESYNC_INTERVAL
    ) -> None:
        LOG.info("starting resource watcher (resync every %.0fs)", resync_interval)
        try:
            self._source.run(self.handle, stop_event, resync_interval)
        finally:
            LOG.info("resource watcher stopped")

    def handle(self, event: WatchEvent) -> None:
        if isinstance(event, ResourceUpsert):
            with self._lock:
                self._cache[event.key] = event.resource
            LOG.debug("resource %s upserted", event.key)
        elif isinstance(event, ResourceDelete):
            with self._lock:
                self._cache.pop(event.key, None)
            LOG.debug("resource %s deleted", event.key)
        elif isinstance(event, ResourceResync):
            with self._lock:
                self._cache = dict(event.resources)
            LOG.debug("resynced %d resources: %s", len(event.resources), self.keys())
        elif isinstance(event, WatchError):
            LOG.warning("watch stream error: %s", event.error)
            self._healthy.mark_unhealthy()
            return
        else:
            raise TypeError(f"Unsupported event type: {type(event)!r}")
        self._healthy.mark_healthy()

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._cache)

    def snapshot(self) -> List[IPPool]:
        with self._lock:
            resources = list(self._cache.values())

        pools: List[IPPool] = []
        errors: List[ResourceError] = []
        for raw in resources:
            try:
                pools.append(extract(raw, self._end_policy))
            except ResourceError as exc:
                errors.append(exc)
        if errors:
            raise SnapshotError(errors)
        return pools
