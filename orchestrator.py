# orchestrator.py
# Run driver: find the local /24, discover live hosts, scan each one in parallel

from __future__ import annotations
import concurrent.futures
import logging
import socket
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from checkpoint import CheckpointError, CheckpointStore
from config import ScanConfig
from discovery import DiscoveryEngine, LivenessProbe, candidate_addresses, make_probe
from scanner import HostScanResult, PortScanner, ProbeFn, ResourceExhaustedError
from ui import ProgressReporter, TerminalProgress

logger = logging.getLogger(__name__)


class LocalAddressError(RuntimeError):
    """The machine's own IPv4 address (and so the subnet to sweep) is unknown."""


def get_local_ipv4() -> str:
    """Best-effort non-loopback IPv4 of this machine."""
    # UDP connect only picks the outbound interface; nothing is sent
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            if not ip.startswith("127.") and ip != "0.0.0.0":
                return ip
    except OSError as e:
        logger.debug("Route lookup for local address failed: %s", e)
    # Fallback via hostname resolution
    try:
        for ip in socket.gethostbyname_ex(socket.gethostname())[2]:
            if not ip.startswith("127."):
                return ip
    except OSError as e:
        raise LocalAddressError(f"Cannot resolve local address: {e}") from e
    raise LocalAddressError("No non-loopback IPv4 address found")


def subnet_of(ip: str) -> str:
    """"192.168.1.23" -> "192.168.1"."""
    head, sep, _ = ip.rpartition(".")
    if not sep:
        raise LocalAddressError(f"Not an IPv4 address: {ip!r}")
    return head


@dataclass
class RunSummary:
    subnet: str
    hosts: List[str] = field(default_factory=list)
    completed: Dict[str, HostScanResult] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


class ScanOrchestrator:
    def __init__(
        self,
        cfg: ScanConfig,
        probe: Optional[LivenessProbe] = None,
        store: Optional[CheckpointStore] = None,
        progress: Optional[ProgressReporter] = None,
        port_probe: Optional[ProbeFn] = None,
        local_address: Callable[[], str] = get_local_ipv4,
    ):
        self.cfg = cfg
        self.probe = probe or make_probe(cfg.ping_mode)
        self.store = store or CheckpointStore(cfg.out_dir)
        self.progress = progress or TerminalProgress()
        self.port_probe = port_probe
        self.local_address = local_address

    def resolve_subnet(self) -> str:
        if self.cfg.subnet:
            candidate_addresses(self.cfg.subnet)
            return self.cfg.subnet
        return subnet_of(self.local_address())

    def run(self) -> RunSummary:
        """
        Discovery failure (no local address) raises LocalAddressError. Any
        error that ends one host's scan (unusable checkpoint files, no sockets
        left, or anything unexpected) is reported in RunSummary.failed and the
        other hosts carry on.
        """
        cfg = self.cfg
        subnet = self.resolve_subnet()
        summary = RunSummary(subnet)
        msg = self.progress.message

        self.progress.start()
        try:
            msg(f"Scanning subnet: {subnet}.0/24")
            msg(f"Using {cfg.max_workers} threads for scanning.")
            msg(f"Host discovery: {self.probe.name} probe, {cfg.probe_timeout:g}s timeout")

            engine = DiscoveryEngine(self.probe, timeout=cfg.probe_timeout, workers=cfg.discovery_workers)
            summary.hosts = engine.discover(subnet, on_found=lambda ip: msg(f"Found host: {ip}"))
            if not summary.hosts:
                msg("No live hosts found.")
                return summary

            rows = {host: self.progress.allocate_row(host) for host in summary.hosts}
            for host in summary.hosts:
                msg(f"Scanning IP: {host}")

            with concurrent.futures.ThreadPoolExecutor(
                max_workers=cfg.max_workers, thread_name_prefix="connect"
            ) as pool, concurrent.futures.ThreadPoolExecutor(
                max_workers=len(summary.hosts), thread_name_prefix="host"
            ) as host_pool:
                scanner = PortScanner(
                    self.store,
                    self.progress,
                    pool,
                    timeout=cfg.connect_timeout,
                    window=cfg.max_workers * 2,
                    probe=self.port_probe,
                )
                futs = {
                    host_pool.submit(scanner.run, host, rows[host], cfg.start_port, cfg.end_port): host
                    for host in summary.hosts
                }
                for fut in concurrent.futures.as_completed(futs):
                    host = futs[fut]
                    try:
                        summary.completed[host] = fut.result()
                    except (CheckpointError, ResourceExhaustedError) as e:
                        logger.error("Aborted scan of %s: %s", host, e)
                        summary.failed[host] = str(e)
                    except Exception as e:
                        logger.error("Aborted scan of %s: unexpected %s: %s", host, type(e).__name__, e, exc_info=True)
                        summary.failed[host] = f"{type(e).__name__}: {e}"

            if summary.failed:
                msg(f"Scanning completed for all devices ({len(summary.failed)} failed: {', '.join(sorted(summary.failed))}).")
            else:
                msg("Scanning completed for all devices.")
            return summary
        finally:
            self.progress.stop()
            self.store.close()
