"""Per-component health flags and the registry that aggregates them."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

LOG = logging.getLogger(__name__)


class HealthFlag:
    """Boolean written by a single owner and read from any thread.

    Rebinding an attribute is atomic under the interpreter lock, so neither
    side takes a lock.
    """

    __slots__ = ("_healthy",)

    def __init__(self) -> None:
        self._healthy = False

    def mark_healthy(self) -> None:
        self._healthy = True

    def mark_unhealthy(self) -> None:
        self._healthy = False

    def __bool__(self) -> bool:
        return self._healthy


class HealthReporter(ABC):
    """Capability shared by every component that reports its health."""

    @abstractmethod
    def is_healthy(self) -> bool:
        """Return ``True`` while the component performs its duty."""


class HealthRegistry:
    """Aggregate health over a fixed set of named reporters."""

    def __init__(self) -> None:
        self._reporters: Dict[str, HealthReporter] = {}

    def register(self, name: str, reporter: HealthReporter) -> None:
        if name in self._reporters:
            raise ValueError(f"health reporter '{name}' already registered")
        self._reporters[name] = reporter

    def unregister(self, name: str) -> None:
        self._reporters.pop(name, None)

    def unhealthy(self) -> List[str]:
        return [
            name
            for name, reporter in self._reporters.items()
            if not reporter.is_healthy()
        ]

    def is_healthy(self) -> bool:
        failing = self.unhealthy()
        if failing:
            LOG.debug("unhealthy components: %s", ", ".join(failing))
            return False
        return True
