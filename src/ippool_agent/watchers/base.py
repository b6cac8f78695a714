"""Abstract interface for the remote list/watch collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from threading import Event
from typing import Callable

from ippool_mirror.events import WatchEvent

EventHandler = Callable[[WatchEvent], None]


class WatchSource(ABC):
    """Feed list/watch events for a resource collection into a handler."""

    @abstractmethod
    def run(
        self, handler: EventHandler, stop_event: Event, resync_interval: float
    ) -> None:
        """Block until ``stop_event`` is set, delivering events to ``handler``.

        Implementations start with a full listing (:class:`ResourceResync`),
        then stream upserts and deletes, relist every ``resync_interval``
        seconds and reconnect on their own after failures, reporting each
        failure as a :class:`WatchError`.
        """
