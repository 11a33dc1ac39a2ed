# discovery.py
# Host discovery: ping sweep of a /24 through a pluggable liveness probe

from __future__ import annotations
import concurrent.futures
import ipaddress
import logging
import platform
import subprocess
from typing import Callable, List, Optional

import ping3

logger = logging.getLogger(__name__)

IS_WINDOWS = platform.system().lower() == "windows"
IS_MACOS = platform.system() == "Darwin"


class LivenessProbe:
    """probe(address, timeout) -> True if the address answered in time."""

    name = "base"

    def probe(self, address: str, timeout: float) -> bool:
        raise NotImplementedError


class PingProbe(LivenessProbe):
    """One echo request through the platform ping utility; exit code 0 means alive."""

    name = "shell"

    def command(self, address: str, timeout: float) -> List[str]:
        if IS_WINDOWS:
            # Windows: ping -n 1 -w <ms> <ip>
            return ["ping", "-n", "1", "-w", str(max(1, int(timeout * 1000))), address]
        if IS_MACOS:
            # macOS: -W is the reply wait in milliseconds
            return ["ping", "-c", "1", "-W", str(max(1, int(timeout * 1000))), "-n", address]
        # Linux: -W takes whole seconds
        return ["ping", "-c", "1", "-W", str(max(1, int(round(timeout)))), "-n", address]

    def probe(self, address: str, timeout: float) -> bool:
        res = subprocess.run(
            self.command(address, timeout),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout + 2,
        )
        return res.returncode == 0


class IcmpProbe(LivenessProbe):
    """Native echo request via ping3 (needs raw or unprivileged ICMP sockets)."""

    name = "icmp"

    def probe(self, address: str, timeout: float) -> bool:
        # ping3 returns the delay in seconds, None on timeout, False on error
        delay = ping3.ping(address, timeout=timeout)
        return delay is not None and delay is not False


def make_probe(mode: str) -> LivenessProbe:
    if mode == "shell":
        return PingProbe()
    if mode == "icmp":
        return IcmpProbe()
    raise ValueError(f"Unknown ping mode: {mode}")


def candidate_addresses(subnet: str) -> List[str]:
    """"a.b.c" -> ["a.b.c.1", ..., "a.b.c.254"]."""
    try:
        net = ipaddress.IPv4Network(f"{subnet}.0/24")
    except ValueError:
        raise ValueError(f"Invalid subnet prefix: {subnet!r}") from None
    return [str(ip) for ip in net.hosts()]


class DiscoveryEngine:
    """
    Probes every candidate of a /24 concurrently (at most `workers` at a time)
    and returns responders in the order their probes finished. A probe that
    fails or raises just leaves that address out; nothing is retried.
    """

    def __init__(self, probe: LivenessProbe, timeout: float = 1.0, workers: int = 64):
        self.probe = probe
        self.timeout = timeout
        self.workers = max(1, workers)

    def _check(self, address: str) -> bool:
        try:
            return bool(self.probe.probe(address, self.timeout))
        except Exception as e:
            logger.debug("Liveness probe for %s failed: %s", address, e)
            return False

    def discover(self, subnet: str, on_found: Optional[Callable[[str], None]] = None) -> List[str]:
        addresses = candidate_addresses(subnet)
        live: List[str] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=min(self.workers, len(addresses))) as ex:
            futs = {ex.submit(self._check, ip): ip for ip in addresses}
            for fut in concurrent.futures.as_completed(futs):
                if not fut.result():
                    continue
                ip = futs[fut]
                live.append(ip)
                if on_found:
                    on_found(ip)
        logger.debug("Discovery of %s.0/24 finished: %d of %d responded", subnet, len(live), len(addresses))
        return live
