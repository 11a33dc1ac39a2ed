# scanner.py
# Resumable TCP connect scan of one host over a shared, bounded worker pool

from __future__ import annotations
import errno
import logging
import socket
from contextlib import closing
from concurrent.futures import FIRST_COMPLETED, Executor, Future, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from checkpoint import CheckpointStore, PortState
from config import PORT_MAX, PORT_MIN
from ui import ProgressReporter

logger = logging.getLogger(__name__)

# errnos meaning the process has run out of sockets or ephemeral ports
_EXHAUSTION_ERRNOS = {errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.EADDRNOTAVAIL, errno.EAGAIN}

ProbeFn = Callable[[str, int, float], PortState]


class ResourceExhaustedError(Exception):
    """No socket could be created for a connection attempt."""

    def __init__(self, host: str, port: int, cause: OSError):
        super().__init__(f"{host}: cannot open socket for port {port}: {cause}")
        self.host = host
        self.port = port


def parse_port_range(spec: str) -> Tuple[int, int]:
    """
    "START-END" or a single "PORT" -> (start, end), both inclusive.
    """
    spec = spec.strip()
    try:
        if "-" in spec:
            start_s, end_s = spec.split("-", 1)
            start, end = int(start_s), int(end_s)
        else:
            start = end = int(spec)
    except ValueError:
        raise ValueError(f"Invalid port range: {spec!r}") from None
    if not (PORT_MIN <= start <= PORT_MAX and PORT_MIN <= end <= PORT_MAX) or start > end:
        raise ValueError(f"Invalid port range: {spec!r}")
    return start, end


def probe_port(host: str, port: int, timeout: float) -> PortState:
    """
    One TCP connect attempt. Refused, unreachable and timed out all count as
    closed; running out of descriptors or local ports raises
    ResourceExhaustedError.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return PortState.OPEN
    except OSError as e:
        if e.errno in _EXHAUSTION_ERRNOS:
            raise ResourceExhaustedError(host, port, e) from e
        return PortState.CLOSED


@dataclass
class HostScanResult:
    host: str
    start_port: int
    end_port: int
    skipped: int = 0
    scanned: int = 0
    open_ports: List[int] = field(default_factory=list)


class PortScanner:
    """
    Scans one host's port range, skipping ports already in its checkpoint.

    Attempts run on `pool`, which is shared by every host so its size caps
    the number of in-flight connects for the whole run. At most `window`
    attempts per host are submitted at any time. Results are recorded and
    reported from the calling thread, so per-host progress only moves forward.
    """

    def __init__(
        self,
        store: CheckpointStore,
        progress: ProgressReporter,
        pool: Executor,
        timeout: float = 1.0,
        window: int = 256,
        probe: Optional[ProbeFn] = None,
    ):
        self.store = store
        self.progress = progress
        self.pool = pool
        self.timeout = timeout
        self.window = max(1, window)
        self.probe = probe or probe_port

    def _attempt(self, host: str, port: int) -> PortState:
        try:
            return self.probe(host, port, self.timeout)
        except ResourceExhaustedError:
            raise
        except Exception as e:
            logger.debug("%s:%d attempt failed (%s), recording closed", host, port, e)
            return PortState.CLOSED

    def run(self, host: str, row: int, start_port: int = PORT_MIN, end_port: int = PORT_MAX) -> HostScanResult:
        checkpoint = self.store.load(host)
        self.store.reconcile_open_list(host, checkpoint)

        todo = [p for p in range(start_port, end_port + 1) if p not in checkpoint]
        result = HostScanResult(host, start_port, end_port, skipped=(end_port - start_port + 1) - len(todo))
        open_ports = [p for p, s in checkpoint.items() if s is PortState.OPEN and start_port <= p <= end_port]
        if result.skipped:
            logger.info("%s: %d port(s) already checkpointed, skipping", host, result.skipped)

        total = len(todo)
        if not total:
            self.progress.update(host, 0, 0, row)
        else:
            with closing(self._scan(host, iter(todo))) as results:
                for port, state in results:
                    self.store.record(host, port, state)
                    if state is PortState.OPEN:
                        open_ports.append(port)
                    result.scanned += 1
                    self.progress.update(host, result.scanned, total, row)

        result.open_ports = sorted(open_ports)
        self.progress.message(f"Port scanning completed for range {start_port} to {end_port} on IP {host}")
        return result

    def _scan(self, host: str, ports: Iterator[int]) -> Iterator[Tuple[int, PortState]]:
        pending: Dict[Future, int] = {}

        def submit_next() -> bool:
            port = next(ports, None)
            if port is None:
                return False
            pending[self.pool.submit(self._attempt, host, port)] = port
            return True

        try:
            while len(pending) < self.window and submit_next():
                pass
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    port = pending.pop(fut)
                    yield port, fut.result()
                while len(pending) < self.window and submit_next():
                    pass
        finally:
            # Host aborted (or generator closed): drop attempts not yet started
            for fut in pending:
                fut.cancel()
