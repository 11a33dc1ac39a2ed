# config.py
# Central configuration for the subnet port sweep

from __future__ import annotations
import ipaddress
from dataclasses import dataclass
from typing import Optional


PORT_MIN = 1
PORT_MAX = 65535

PING_MODES = ("shell", "icmp")


@dataclass
class ScanConfig:
    # Port range scanned on every live host (inclusive)
    start_port: int = PORT_MIN
    end_port: int = PORT_MAX

    # Timeouts (seconds)
    connect_timeout: float = 1.0
    probe_timeout: float = 1.0

    # Concurrency: max_workers is the global cap on in-flight connects across all hosts
    max_workers: int = 100
    discovery_workers: int = 64

    # Liveness probe flavour: "shell" (ping utility) or "icmp" (ping3)
    ping_mode: str = "shell"

    # Where <host>.txt and <host>_Open.txt live
    out_dir: str = "."

    # Rich live panel instead of fixed-row bars
    ui: bool = False

    # Explicit "a.b.c" prefix; None means detect from the local address
    subnet: Optional[str] = None

    version: str = "1.0.0"

    def validate(self) -> "ScanConfig":
        if not (PORT_MIN <= self.start_port <= PORT_MAX and PORT_MIN <= self.end_port <= PORT_MAX):
            raise ValueError(f"Ports must be within {PORT_MIN}-{PORT_MAX}")
        if self.start_port > self.end_port:
            raise ValueError(f"Invalid port range: {self.start_port}-{self.end_port}")
        if self.max_workers < 1 or self.discovery_workers < 1:
            raise ValueError("Worker counts must be >= 1")
        if self.connect_timeout <= 0 or self.probe_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.ping_mode not in PING_MODES:
            raise ValueError(f"Unknown ping mode: {self.ping_mode}")
        if self.subnet is not None:
            try:
                ipaddress.IPv4Network(f"{self.subnet}.0/24")
            except ValueError:
                raise ValueError(f"Invalid subnet prefix: {self.subnet!r}") from None
        return self
