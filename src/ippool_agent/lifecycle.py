"""Run the watcher, poster and health server under one stop event."""

from __future__ import annotations

import logging
from enum import Enum
from threading import Event, Lock, Thread
from typing import Callable, List, Optional

from ippool_mirror.poster import Poster

from .server import HealthServer, ShutdownError
from .watchers.resource import DEFAULT_RESYNC_INTERVAL, ResourceWatcher

LOG = logging.getLogger(__name__)

JOIN_TIMEOUT = 30.0


class LifecycleState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


class Lifecycle:
    """Coordinate the three long running tasks of the agent.

    The watcher and the poster run in threads, the health server runs in the
    calling thread.  Any task failing sets the shared stop event, which
    makes every other task return; :meth:`run` then reports the first
    failure it recorded.
    """

    def __init__(
        self,
        watcher: ResourceWatcher,
        poster: Poster,
        server: HealthServer,
        *,
        resync_interval: float = DEFAULT_RESYNC_INTERVAL,
    ) -> None:
        self._watcher = watcher
        self._poster = poster
        self._server = server
        self._resync_interval = resync_interval
        self._stop_event = Event()
        self._errors: List[BaseException] = []
        self._lock = Lock()
        self._state = LifecycleState.STARTING

    @property
    def stop_event(self) -> Event:
        return self._stop_event

    @property
    def state(self) -> LifecycleState:
        return self._state

    def cancel(self) -> None:
        if not self._stop_event.is_set():
            LOG.info("cancellation requested")
        self._stop_event.set()

    def _set_state(self, state: LifecycleState) -> None:
        LOG.debug("lifecycle %s -> %s", self._state.value, state.value)
        self._state = state

    def _fail(self, name: str, exc: BaseException) -> None:
        with self._lock:
            self._errors.append(exc)
        if isinstance(exc, ShutdownError):
            LOG.error("%s: %s", name, exc)
        else:
            LOG.error("%s failed: %s", name, exc, exc_info=exc)
        self.cancel()

    def _supervise(self, name: str, target: Callable[[], None]) -> None:
        try:
            target()
        except Exception as exc:
            self._fail(name, exc)
        finally:
            if not self._stop_event.is_set():
                LOG.warning("%s returned before cancellation", name)
            self.cancel()

    def run(self) -> Optional[BaseException]:
        threads = [
            Thread(
                target=self._supervise,
                args=(
                    "watcher",
                    lambda: self._watcher.run(self._stop_event, self._resync_interval),
                ),
                name="ippool-watcher",
                daemon=True,
            ),
            Thread(
                target=self._supervise,
                args=("poster", lambda: self._poster.run(self._stop_event)),
                name="ippool-poster",
                daemon=True,
            ),
        ]
        for thread in threads:
            thread.start()

        self._set_state(LifecycleState.RUNNING)
        self._supervise("health server", lambda: self._server.serve(self._stop_event))

        self._set_state(LifecycleState.SHUTTING_DOWN)
        for thread in threads:
            thread.join(JOIN_TIMEOUT)
            if thread.is_alive():
                LOG.warning("%s did not stop within %.0fs", thread.name, JOIN_TIMEOUT)

        self._set_state(LifecycleState.STOPPED)
        with self._lock:
            errors = list(self._errors)
        return errors[0] if errors else None
