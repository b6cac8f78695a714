"""Liveness endpoint aggregating the health of the agent components."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from functools import partial
from threading import Event
from typing import Optional, Tuple

import uvicorn
from uvicorn.protocols.http.h11_impl import H11Protocol
from fastapi import FastAPI, Response
from fastapi.responses import PlainTextResponse

from ippool_mirror.health import HealthRegistry

LOG = logging.getLogger(__name__)

DEFAULT_LISTEN_ADDRESS = ":3000"
DEFAULT_SHUTDOWN_TIMEOUT = 60.0

# Limits applied to every client connection.
IDLE_TIMEOUT = 5
DEFAULT_HEADER_TIMEOUT = 2.0
MAX_HEADER_BYTES = 2 << 10
BACKLOG = 64

STOP_POLL_INTERVAL = 0.1


class HealthServerError(Exception):
    """Base class for fatal health server failures."""


class ListenError(HealthServerError):
    """The listen socket could not be bound."""


class ServerClosedError(HealthServerError):
    """The server stopped before it was asked to."""


class ShutdownError(HealthServerError):
    """Graceful shutdown did not finish within the deadline."""


def parse_listen_address(value: str) -> Tuple[str, int]:
    """Split ``host:port`` (``:port`` meaning every interface)."""

    host, sep, port = value.strip().rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {value!r}, expected host:port")
    number = int(port)
    if number > 65535:
        raise ValueError(f"invalid port in listen address {value!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, number


def create_app(registry: HealthRegistry) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/healthz")
    def healthz() -> Response:
        if registry.is_healthy():
            return Response(status_code=204)
        return PlainTextResponse("unhealthy", status_code=503)

    return app


class _DeadlineH11Protocol(H11Protocol):
    """h11 connection closed when a request head does not arrive in time.

    uvicorn only bounds the idle time between requests.  A client trickling
    a request head (or an unread body) would otherwise keep its connection
    open forever.
    """

    def __init__(self, *args, header_timeout: float = DEFAULT_HEADER_TIMEOUT, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._header_timeout = header_timeout
        self._header_deadline: Optional[asyncio.TimerHandle] = None

    def connection_made(self, transport) -> None:
        super().connection_made(transport)
        self._arm_deadline()

    def data_received(self, data: bytes) -> None:
        cycle = self.cycle
        if self._header_deadline is None and (cycle is None or cycle.response_complete):
            self._arm_deadline()
        super().data_received(data)
        if self.cycle is not cycle:
            self._disarm_deadline()

    def connection_lost(self, exc) -> None:
        self._disarm_deadline()
        super().connection_lost(exc)

    def _arm_deadline(self) -> None:
        self._disarm_deadline()
        self._header_deadline = self.loop.call_later(
            self._header_timeout, self._on_header_timeout
        )

    def _disarm_deadline(self) -> None:
        if self._header_deadline is not None:
            self._header_deadline.cancel()
            self._header_deadline = None

    def _on_header_timeout(self) -> None:
        self._header_deadline = None
        if not self.transport.is_closing():
            LOG.debug("closing connection without a complete request after %.1fs", self._header_timeout)
            self.transport.close()


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the process owner."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class HealthServer:
    """Serve ``GET /healthz`` until the stop event is set.

    The socket is bound up front so that a busy port is reported as
    :class:`ListenError` before anything is served.  Once the stop event is
    set the server stops accepting connections and waits up to
    ``shutdown_timeout`` seconds for open connections to drain.  Connections
    that do not deliver a complete request head within ``header_timeout``
    seconds are closed.
    """

    def __init__(
        self,
        registry: HealthRegistry,
        *,
        listen_address: str = DEFAULT_LISTEN_ADDRESS,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        header_timeout: float = DEFAULT_HEADER_TIMEOUT,
    ) -> None:
        self._host, self._port = parse_listen_address(listen_address)
        self._shutdown_timeout = shutdown_timeout
        self._header_timeout = header_timeout
        self._app = create_app(registry)
        self._bound = Event()
        self._address: Optional[Tuple[str, int]] = None

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        return self._address

    def wait_bound(self, timeout: Optional[float] = None) -> bool:
        return self._bound.wait(timeout)

    def serve(self, stop_event: Event) -> None:
        sock = self._bind()
        LOG.info("health server listening on %s:%d", *self._address)
        try:
            asyncio.run(self._serve(sock, stop_event))
        finally:
            sock.close()
            LOG.info("health server stopped")

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self._host, self._port))
            sock.listen(BACKLOG)
        except OSError as exc:
            sock.close()
            raise ListenError(
                f"cannot listen on {self._host}:{self._port}: {exc}"
            ) from exc
        self._address = sock.getsockname()[:2]
        self._bound.set()
        return sock

    def _config(self) -> uvicorn.Config:
        return uvicorn.Config(
            self._app,
            http=partial(_DeadlineH11Protocol, header_timeout=self._header_timeout),
            lifespan="off",
            log_config=None,
            access_log=False,
            backlog=BACKLOG,
            timeout_keep_alive=IDLE_TIMEOUT,
            h11_max_incomplete_event_size=MAX_HEADER_BYTES,
        )

    async def _serve(self, sock: socket.socket, stop_event: Event) -> None:
        server = _EmbeddedServer(self._config())
        serve_task = asyncio.ensure_future(server.serve(sockets=[sock]))

        while not stop_event.is_set() and not serve_task.done():
            await asyncio.sleep(STOP_POLL_INTERVAL)

        if serve_task.done():
            serve_task.result()
            raise ServerClosedError("health server closed unexpectedly")

        LOG.info(
            "stopping health server (deadline %.0fs)", self._shutdown_timeout
        )
        server.should_exit = True
        try:
            await asyncio.wait_for(
                asyncio.shield(serve_task), timeout=self._shutdown_timeout
            )
        except asyncio.TimeoutError:
            server.force_exit = True
            serve_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await serve_task
            raise ShutdownError(
                f"health server did not stop within {self._shutdown_timeout:.0f}s"
            ) from None
