"""Periodic publisher that ships the cached pools to a downstream endpoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from threading import Event
from typing import List, Optional

import httpx

from .extractor import SnapshotError
from .health import HealthFlag, HealthReporter
from .models import IPPool, to_payload

LOG = logging.getLogger(__name__)

DEFAULT_SEND_INTERVAL = 10.0
MIN_SEND_INTERVAL = 1.0
DEFAULT_ENDPOINT_URL = "http://localhost:8080/"
DEFAULT_REQUEST_TIMEOUT = 10.0

STOP_POLL_INTERVAL = 0.05


class SnapshotSource(ABC):
    """Anything able to hand out the current set of pools."""

    @abstractmethod
    def snapshot(self) -> List[IPPool]:
        """Return every known pool or raise :class:`SnapshotError`."""


class UnexpectedResponseError(Exception):
    """The endpoint answered with a status outside the 2xx range."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(
            f"unexpected response from server, code: {status_code} "
            f"with message: {message!r}"
        )


class Poster(HealthReporter):
    """Post the full pool snapshot every ``send_interval`` seconds.

    Each cycle is a complete replacement of what the endpoint knows, so a
    failed cycle is simply retried on the next tick.  Health reflects the
    outcome of the most recent cycle.

    Every request runs on its own event loop and is abandoned as soon as the
    stop event is set.  ``transport`` is handed to the client of every
    request and must not hold state tied to a single loop.  Cookies set by
    the endpoint are carried over to later requests.
    """

    def __init__(
        self,
        source: SnapshotSource,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        send_interval: float = DEFAULT_SEND_INTERVAL,
        endpoint_url: str = DEFAULT_ENDPOINT_URL,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        if send_interval <= MIN_SEND_INTERVAL:
            LOG.warning(
                "send interval %.3fs is at or below the %.1fs minimum, using %.1fs",
                send_interval,
                MIN_SEND_INTERVAL,
                DEFAULT_SEND_INTERVAL,
            )
            send_interval = DEFAULT_SEND_INTERVAL
        self._source = source
        self._send_interval = send_interval
        self._endpoint_url = endpoint_url or DEFAULT_ENDPOINT_URL
        self._request_timeout = request_timeout
        self._transport = transport
        self._cookies = httpx.Cookies()
        self._healthy = HealthFlag()

    @property
    def send_interval(self) -> float:
        return self._send_interval

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    def is_healthy(self) -> bool:
        return bool(self._healthy)

    def run(self, stop_event: Event) -> None:
        LOG.info(
            "posting pool data to %s every %.1fs",
            self._endpoint_url,
            self._send_interval,
        )
        try:
            while not stop_event.wait(self._send_interval):
                self.publish_once(stop_event)
        finally:
            LOG.info("poster stopped")

    def publish_once(self, stop_event: Optional[Event] = None) -> bool:
        """Run a single publish cycle and return whether it succeeded."""

        try:
            pools = self._source.snapshot()
        except SnapshotError as exc:
            LOG.warning("skipping publish, snapshot unavailable: %s", exc)
            self._healthy.mark_unhealthy()
            return False

        LOG.debug("publishing %d pools: %s", len(pools), pools)
        self._healthy.mark_healthy()

        if stop_event is not None and stop_event.is_set():
            return False

        try:
            response = asyncio.run(self._post(pools, stop_event))
        except (httpx.HTTPError, UnexpectedResponseError) as exc:
            LOG.warning("failed to post pool data to %s: %s", self._endpoint_url, exc)
            self._healthy.mark_unhealthy()
            return False
        if response is None:
            LOG.info("post to %s abandoned, stop requested", self._endpoint_url)
            return False
        return True

    async def _post(
        self, pools: List[IPPool], stop_event: Optional[Event]
    ) -> Optional[httpx.Response]:
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self._request_timeout,
            cookies=self._cookies,
        ) as client:
            request = asyncio.ensure_future(
                client.post(
                    self._endpoint_url,
                    json=to_payload(pools),
                    headers={
                        "Content-Type": "application/json",
                        "Connection": "close",
                    },
                )
            )
            while not request.done():
                if stop_event is not None and stop_event.is_set():
                    request.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await request
                    return None
                await asyncio.wait({request}, timeout=STOP_POLL_INTERVAL)
            response = request.result()
            self._cookies.update(client.cookies)

        if not response.is_success:
            raise UnexpectedResponseError(response.status_code, response.text)
        return response
