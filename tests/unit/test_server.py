import socket
from threading import Event, Thread, Timer

import httpx
import pytest

from ippool_agent.server import HealthServer, ListenError, ShutdownError
from ippool_mirror.health import HealthRegistry, HealthReporter


class StaticReporter(HealthReporter):
    def __init__(self, healthy=True):
        self.healthy = healthy

    def is_healthy(self):
        return self.healthy


class BlockingReporter(HealthReporter):
    """Hold the health request open until released."""

    def __init__(self):
        self.entered = Event()
        self.release = Event()

    def is_healthy(self):
        self.entered.set()
        self.release.wait(5)
        return True


class ServerThread(Thread):
    def __init__(self, server, stop_event):
        super().__init__(daemon=True)
        self.server = server
        self.stop_event = stop_event
        self.error = None

    def run(self):
        try:
            self.server.serve(self.stop_event)
        except Exception as exc:
            self.error = exc


def start_server(registry, **kwargs):
    stop_event = Event()
    server = HealthServer(registry, listen_address="127.0.0.1:0", **kwargs)
    thread = ServerThread(server, stop_event)
    thread.start()
    assert server.wait_bound(5)
    return server, thread, stop_event


def test_server_serves_and_stops_on_cancel():
    registry = HealthRegistry()
    reporter = StaticReporter(True)
    registry.register("watcher", reporter)
    server, thread, stop_event = start_server(registry, shutdown_timeout=5)
    host, port = server.address

    response = httpx.get(f"http://{host}:{port}/healthz", timeout=5)
    assert response.status_code == 204

    reporter.healthy = False
    response = httpx.get(f"http://{host}:{port}/healthz", timeout=5)
    assert response.status_code == 503

    stop_event.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert thread.error is None
    with pytest.raises(httpx.ConnectError):
        httpx.get(f"http://{host}:{port}/healthz", timeout=1)


def test_listen_failure_is_reported():
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    try:
        server = HealthServer(HealthRegistry(), listen_address=f"127.0.0.1:{port}")
        with pytest.raises(ListenError):
            server.serve(Event())
    finally:
        blocker.close()


def test_shutdown_deadline_exceeded_is_reported():
    registry = HealthRegistry()
    reporter = BlockingReporter()
    registry.register("slow", reporter)
    server, thread, stop_event = start_server(registry, shutdown_timeout=0.2)
    host, port = server.address

    request = Thread(
        target=lambda: httpx.get(f"http://{host}:{port}/healthz", timeout=10),
        daemon=True,
    )
    request.start()
    assert reporter.entered.wait(5)

    releaser = Timer(1.5, reporter.release.set)
    releaser.start()
    stop_event.set()
    thread.join(timeout=10)
    releaser.cancel()
    reporter.release.set()

    assert not thread.is_alive()
    assert isinstance(thread.error, ShutdownError)


def test_stalled_request_heads_do_not_affect_health():
    registry = HealthRegistry()
    registry.register("watcher", StaticReporter(True))
    server, thread, stop_event = start_server(
        registry, shutdown_timeout=5, header_timeout=0.5
    )
    host, port = server.address

    stalled = []
    try:
        for _ in range(40):
            sock = socket.create_connection((host, port), timeout=5)
            sock.sendall(b"GET /healthz HTTP/1.1\r\nHost: x\r\n")
            stalled.append(sock)

        response = httpx.get(f"http://{host}:{port}/healthz", timeout=5)
        assert response.status_code == 204

        # the server drops connections whose request head never completes
        for sock in stalled:
            try:
                assert sock.recv(1024) == b""
            except ConnectionResetError:
                pass

        response = httpx.get(f"http://{host}:{port}/healthz", timeout=5)
        assert response.status_code == 204
    finally:
        for sock in stalled:
            sock.close()
        stop_event.set()
        thread.join(timeout=5)

    assert thread.error is None
