from threading import Event

from ippool_agent.lifecycle import Lifecycle, LifecycleState
from ippool_agent.server import ListenError, ShutdownError


class FakeTask:
    """Block on the stop event, optionally failing first."""

    def __init__(self, error=None):
        self.error = error
        self.started = Event()
        self.stopped = Event()
        self.resync_interval = None

    def run(self, stop_event, resync_interval=None):
        self.started.set()
        self.resync_interval = resync_interval
        try:
            if self.error is not None:
                raise self.error
            stop_event.wait()
        finally:
            self.stopped.set()


class FakeServer:
    def __init__(self, error=None, shutdown_error=None, on_serve=None):
        self.error = error
        self.shutdown_error = shutdown_error
        self.on_serve = on_serve
        self.states = []
        self.lifecycle = None

    def serve(self, stop_event):
        if self.lifecycle is not None:
            self.states.append(self.lifecycle.state)
        if self.error is not None:
            raise self.error
        if self.on_serve is not None:
            self.on_serve()
        stop_event.wait()
        if self.shutdown_error is not None:
            raise self.shutdown_error


def build(watcher=None, poster=None, server=None):
    watcher = watcher or FakeTask()
    poster = poster or FakeTask()
    server = server or FakeServer()
    lifecycle = Lifecycle(watcher, poster, server, resync_interval=7.0)
    server.lifecycle = lifecycle
    return lifecycle, watcher, poster, server


def test_clean_shutdown_returns_no_error():
    server = FakeServer()
    lifecycle, watcher, poster, _ = build(server=server)
    server.on_serve = lifecycle.cancel

    assert lifecycle.state is LifecycleState.STARTING
    assert lifecycle.run() is None

    assert lifecycle.state is LifecycleState.STOPPED
    assert server.states == [LifecycleState.RUNNING]
    assert watcher.stopped.is_set()
    assert poster.stopped.is_set()
    assert watcher.resync_interval == 7.0


def test_listener_failure_cancels_everything():
    error = ListenError("port in use")
    lifecycle, watcher, poster, _ = build(server=FakeServer(error=error))

    assert lifecycle.run() is error

    assert lifecycle.stop_event.is_set()
    assert watcher.stopped.is_set()
    assert poster.stopped.is_set()


def test_task_failure_stops_server():
    error = RuntimeError("watch client crashed")
    lifecycle, _, poster, _ = build(watcher=FakeTask(error=error))

    assert lifecycle.run() is error
    assert poster.stopped.is_set()


def test_shutdown_error_is_reported():
    shutdown = ShutdownError("deadline exceeded")
    server = FakeServer(shutdown_error=shutdown)
    lifecycle, _, _, _ = build(server=server)
    server.on_serve = lifecycle.cancel

    assert lifecycle.run() is shutdown


def test_shutdown_error_does_not_mask_earlier_failure():
    error = RuntimeError("poster crashed")
    shutdown = ShutdownError("deadline exceeded")
    lifecycle, _, _, _ = build(
        poster=FakeTask(error=error),
        server=FakeServer(shutdown_error=shutdown),
    )

    assert lifecycle.run() is error
