# checkpoint.py
# Per-host resume files: "<host>.txt" (every tested port) and "<host>_Open.txt" (open ports only)

from __future__ import annotations
import logging
import os
import threading
from enum import Enum
from typing import Dict, IO, List, Optional, Set

from config import PORT_MAX, PORT_MIN

logger = logging.getLogger(__name__)


class PortState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class CheckpointError(Exception):
    """A host's checkpoint files could not be read or written."""

    def __init__(self, host: str, path: str, reason: str):
        super().__init__(f"{host}: cannot use checkpoint file {path}: {reason}")
        self.host = host
        self.path = path


class CheckpointStore:
    """
    Append-only result files, one pair per host.

    Each line of "<host>.txt" is "<port> <open|closed>"; each line of
    "<host>_Open.txt" is "<port>". A port line is always written to the main
    file before its open-list line, so a crash can lose an open-list entry
    but never produce one without its main record.

    Assumes a single writer per host: files are read once per scan and not
    re-read before each write.
    """

    def __init__(self, out_dir: str = "."):
        self.out_dir = out_dir
        self._registry = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._open_locks: Dict[str, threading.Lock] = {}
        self._handles: Dict[str, IO[str]] = {}
        self._recorded: Dict[str, Set[int]] = {}

    def path_for(self, host: str) -> str:
        return os.path.join(self.out_dir, f"{host}.txt")

    def open_path_for(self, host: str) -> str:
        return os.path.join(self.out_dir, f"{host}_Open.txt")

    def _lock_for(self, table: Dict[str, threading.Lock], host: str) -> threading.Lock:
        with self._registry:
            lock = table.get(host)
            if lock is None:
                lock = table[host] = threading.Lock()
            return lock

    def load(self, host: str) -> Dict[int, PortState]:
        """
        Read every recorded port for host. Missing file -> empty mapping.
        Malformed lines are skipped; for duplicated ports the first line wins.
        """
        path = self.path_for(host)
        checkpoint: Dict[int, PortState] = {}
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for lineno, line in enumerate(f, 1):
                    parsed = _parse_line(line)
                    if parsed is None:
                        if line.strip():
                            logger.debug("%s:%d: skipping malformed line %r", path, lineno, line.rstrip("\n"))
                        continue
                    port, state = parsed
                    if port in checkpoint:
                        logger.debug("%s:%d: duplicate entry for port %d ignored", path, lineno, port)
                        continue
                    checkpoint[port] = state
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CheckpointError(host, path, str(e)) from e

        with self._lock_for(self._locks, host):
            self._recorded.setdefault(host, set()).update(checkpoint)
        return checkpoint

    def load_open_ports(self, host: str) -> List[int]:
        path = self.open_path_for(host)
        ports: List[int] = []
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    port = _port_number(line.strip())
                    if port is not None:
                        ports.append(port)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CheckpointError(host, path, str(e)) from e
        return ports

    def record(self, host: str, port: int, state: PortState) -> bool:
        """
        Append one result for host. Returns False (and writes nothing) if the
        port is already recorded, so a port never gets a second line.
        """
        state = PortState(state)
        with self._lock_for(self._locks, host):
            recorded = self._recorded.setdefault(host, set())
            if port in recorded:
                logger.debug("%s: port %d already recorded, not rewriting", host, port)
                return False
            self._append(host, self.path_for(host), f"{port} {state.value}\n")
            recorded.add(port)

        if state is PortState.OPEN:
            with self._lock_for(self._open_locks, host):
                self._append(host, self.open_path_for(host), f"{port}\n")
        return True

    def reconcile_open_list(self, host: str, checkpoint: Dict[int, PortState]) -> List[int]:
        """Append open ports from checkpoint that are missing from the open list."""
        listed = set(self.load_open_ports(host))
        missing = sorted(p for p, s in checkpoint.items() if s is PortState.OPEN and p not in listed)
        if not missing:
            return []
        with self._lock_for(self._open_locks, host):
            for port in missing:
                self._append(host, self.open_path_for(host), f"{port}\n")
        logger.warning("%s: restored %d open port(s) missing from %s", host, len(missing), self.open_path_for(host))
        return missing

    def _append(self, host: str, path: str, line: str) -> None:
        # Callers hold the lock guarding path
        try:
            fh = self._handles.get(path)
            if fh is None:
                if self.out_dir:
                    os.makedirs(self.out_dir, exist_ok=True)
                fh = open(path, "a", encoding="utf-8")
                with self._registry:
                    self._handles[path] = fh
            fh.write(line)
            fh.flush()
        except OSError as e:
            raise CheckpointError(host, path, str(e)) from e

    def close(self) -> None:
        with self._registry:
            handles = list(self._handles.values())
            self._handles.clear()
        for fh in handles:
            try:
                fh.close()
            except OSError as e:
                logger.warning("Failed to close %s: %s", fh.name, e)

    def __enter__(self) -> "CheckpointStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _port_number(token: str) -> Optional[int]:
    # ASCII digits only
    if not (token.isascii() and token.isdigit()):
        return None
    port = int(token)
    return port if PORT_MIN <= port <= PORT_MAX else None


def _parse_line(line: str):
    parts = line.split()
    if len(parts) != 2:
        return None
    port = _port_number(parts[0])
    if port is None:
        return None
    try:
        return port, PortState(parts[1])
    except ValueError:
        return None
