"""Kubernetes list/watch source for the ``ippools`` custom resource."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Event
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from ippool_mirror.events import (
    ResourceDelete,
    ResourceResync,
    ResourceUpsert,
    WatchError,
)

from .base import EventHandler, WatchSource

LOG = logging.getLogger(__name__)

HTTP_GONE = 410
DEFAULT_WATCH_TIMEOUT = 10.0
DEFAULT_RETRY_INTERVAL = 5.0


@dataclass(frozen=True)
class ResourceRef:
    group: str
    version: str
    plural: str

    def __str__(self) -> str:
        return f"{self.plural}.{self.version}.{self.group}"


IPPOOL_RESOURCE = ResourceRef(
    group="network.harvesterhci.io",
    version="v1alpha1",
    plural="ippools",
)


class ResourceExpired(Exception):
    """The watch resource version is too old and a relist is needed."""


def object_key(obj: Mapping[str, Any]) -> str:
    """Return ``namespace/name`` or just ``name`` for cluster-scoped objects."""

    metadata = obj.get("metadata") or {}
    name = metadata.get("name", "")
    namespace = metadata.get("namespace")
    if namespace:
        return f"{namespace}/{name}"
    return name


def _resource_version(obj: Mapping[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("resourceVersion")


class KubernetesPoolSource(WatchSource):
    """Reflector-style list/watch loop over ``CustomObjectsApi``.

    The loop lists the collection, then watches from the listed resource
    version in windows of at most ``watch_timeout`` seconds so that the
    stop event is noticed promptly.  Once ``resync_interval`` has elapsed
    since the last listing the collection is listed again, which repairs
    any event the stream dropped.
    """

    def __init__(
        self,
        api,
        resource: ResourceRef = IPPOOL_RESOURCE,
        *,
        namespace: Optional[str] = None,
        watch_timeout: float = DEFAULT_WATCH_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        watch_factory: Callable[[], Any] = watch.Watch,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._resource = resource
        self._namespace = namespace
        self._watch_timeout = watch_timeout
        self._retry_interval = retry_interval
        self._watch_factory = watch_factory
        self._clock = clock

    def run(
        self, handler: EventHandler, stop_event: Event, resync_interval: float
    ) -> None:
        LOG.info(
            "watching %s (namespace=%s, window=%ss)",
            self._resource,
            self._namespace or "<all>",
            self._watch_timeout,
        )
        while not stop_event.is_set():
            try:
                resource_version = self._relist(handler)
                deadline = self._clock() + resync_interval
                while not stop_event.is_set():
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        LOG.debug("resync interval elapsed, relisting %s", self._resource)
                        break
                    resource_version = self._watch_window(
                        handler,
                        stop_event,
                        resource_version,
                        min(remaining, self._watch_timeout),
                    )
            except ResourceExpired:
                LOG.info("watch of %s expired, relisting", self._resource)
            except Exception as exc:
                LOG.warning("list/watch of %s failed: %s", self._resource, exc)
                handler(WatchError(exc))
                stop_event.wait(self._retry_interval)

    def _list_call(self) -> Tuple[Callable[..., Any], Tuple[str, ...]]:
        ref = self._resource
        if self._namespace:
            return (
                self._api.list_namespaced_custom_object,
                (ref.group, ref.version, self._namespace, ref.plural),
            )
        return (
            self._api.list_cluster_custom_object,
            (ref.group, ref.version, ref.plural),
        )

    def _relist(self, handler: EventHandler) -> Optional[str]:
        func, args = self._list_call()
        listing = func(*args)
        items: Dict[str, Mapping[str, Any]] = {}
        for obj in listing.get("items") or []:
            items[object_key(obj)] = obj
        LOG.debug("listed %d %s", len(items), self._resource)
        handler(ResourceResync(items))
        return _resource_version(listing)

    def _watch_window(
        self,
        handler: EventHandler,
        stop_event: Event,
        resource_version: Optional[str],
        window: float,
    ) -> Optional[str]:
        watcher = self._watch_factory()
        kwargs: Dict[str, Any] = {
            "timeout_seconds": max(1, int(window)),
            "_request_timeout": window + self._watch_timeout,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version
        try:
            func, args = self._list_call()
            for event in watcher.stream(func, *args, **kwargs):
                if stop_event.is_set():
                    break
                resource_version = self._dispatch(handler, event, resource_version)
        except ApiException as exc:
            if exc.status == HTTP_GONE:
                raise ResourceExpired() from exc
            raise
        finally:
            watcher.stop()
        return resource_version

    def _dispatch(
        self,
        handler: EventHandler,
        event: Mapping[str, Any],
        resource_version: Optional[str],
    ) -> Optional[str]:
        kind = event.get("type")
        obj = event.get("object")
        if kind == "ERROR":
            status = obj if isinstance(obj, Mapping) else {}
            if status.get("code") == HTTP_GONE:
                raise ResourceExpired()
            raise ApiException(
                status=status.get("code"),
                reason=f"{status.get('reason')}: {status.get('message')}",
            )
        if not isinstance(obj, Mapping):
            raise ValueError(f"cannot decode {kind} event object of type {type(obj)!r}")

        if kind in ("ADDED", "MODIFIED"):
            handler(ResourceUpsert(object_key(obj), obj))
        elif kind == "DELETED":
            handler(ResourceDelete(object_key(obj)))
        elif kind != "BOOKMARK":
            LOG.debug("ignoring watch event of type %s", kind)
        return _resource_version(obj) or resource_version
