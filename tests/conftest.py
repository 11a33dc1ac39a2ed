import threading
import time

import pytest

from checkpoint import CheckpointStore, PortState
from discovery import LivenessProbe
from ui import RecordingProgress


class FakeProbe(LivenessProbe):
    """Liveness probe answering from a fixed set; addresses in `broken` raise."""

    name = "fake"

    def __init__(self, alive=(), broken=()):
        self.alive = set(alive)
        self.broken = set(broken)
        self.calls = []
        self._lock = threading.Lock()

    def probe(self, address, timeout):
        with self._lock:
            self.calls.append(address)
        if address in self.broken:
            raise OSError(f"probe for {address} blew up")
        return address in self.alive


class FakeConnector:
    """
    Stand-in for scanner.probe_port. `open` holds ports (any host) or
    (host, port) pairs that connect; `errors` maps the same keys to an
    exception to raise. Tracks the peak number of concurrent attempts.
    """

    def __init__(self, open=(), errors=None, delay=0.0):
        self.open = set(open)
        self.errors = dict(errors or {})
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, host, port, timeout):
        with self._lock:
            self.calls.append((host, port))
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            for key in ((host, port), port):
                if key in self.errors:
                    raise self.errors[key]
            if (host, port) in self.open or port in self.open:
                return PortState.OPEN
            return PortState.CLOSED
        finally:
            with self._lock:
                self.in_flight -= 1

    def ports_for(self, host):
        with self._lock:
            return sorted(p for h, p in self.calls if h == host)


@pytest.fixture
def store(tmp_path):
    s = CheckpointStore(str(tmp_path))
    yield s
    s.close()


@pytest.fixture
def progress():
    return RecordingProgress()
