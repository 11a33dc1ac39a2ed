# main.py
# CLI entrypoint: sweep the local /24 and port-scan every live host, resumably

from __future__ import annotations
import argparse
import logging
import sys
import time
from typing import List, Optional

from config import PING_MODES, ScanConfig
from orchestrator import LocalAddressError, ScanOrchestrator
from scanner import parse_port_range
from ui import GuardedRichHandler, LiveProgress, ProgressReporter, TerminalProgress

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_NO_LOCAL_ADDRESS = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discover live hosts on the local /24 and scan all their TCP ports")
    parser.add_argument("--subnet", help="First three octets to sweep, e.g. 192.168.1 (default: detect)", default=None)
    parser.add_argument("--ports", help="Port range START-END (default: 1-65535)", default=None)
    parser.add_argument("--workers", type=int, help="Max concurrent connection attempts across all hosts", default=None)
    parser.add_argument("--timeout", type=float, help="Connect timeout per port (seconds)", default=None)
    parser.add_argument("--probe-timeout", type=float, help="Liveness probe timeout (seconds)", default=None)
    parser.add_argument("--ping", choices=PING_MODES, help="Liveness probe: ping utility or native ICMP", default=None)
    parser.add_argument("--out-dir", help="Directory for <host>.txt and <host>_Open.txt", default=None)
    parser.add_argument("--ui", action="store_true", help="Rich live panel instead of fixed-row bars")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {ScanConfig.version}")
    return parser


def config_from_args(args: argparse.Namespace) -> ScanConfig:
    cfg = ScanConfig()
    if args.subnet:
        cfg.subnet = args.subnet.strip().rstrip(".")
    if args.ports:
        cfg.start_port, cfg.end_port = parse_port_range(args.ports)
    if args.workers is not None:
        cfg.max_workers = args.workers
    if args.timeout is not None:
        cfg.connect_timeout = float(args.timeout)
    if args.probe_timeout is not None:
        cfg.probe_timeout = float(args.probe_timeout)
    if args.ping:
        cfg.ping_mode = args.ping
    if args.out_dir:
        cfg.out_dir = args.out_dir
    cfg.ui = bool(args.ui)
    return cfg.validate()


def setup_logging(progress: ProgressReporter, verbose: bool = False) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(GuardedRichHandler(progress, markup=False))


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = config_from_args(args)
    except ValueError as e:
        print(f"Invalid options: {e}", file=sys.stderr)
        return EXIT_USAGE

    progress = LiveProgress() if cfg.ui else TerminalProgress()
    setup_logging(progress, args.verbose)

    try:
        summary = ScanOrchestrator(cfg, progress=progress).run()
    except LocalAddressError as e:
        print(f"Cannot determine the local subnet: {e}", file=sys.stderr)
        return EXIT_NO_LOCAL_ADDRESS

    open_total = sum(len(r.open_ports) for r in summary.completed.values())
    logging.getLogger(__name__).info(
        "[%s] Swept %s.0/24: %d host(s), %d open port(s) recorded in %s",
        time.strftime("%Y-%m-%d %H:%M:%S"), summary.subnet, len(summary.hosts), open_total, cfg.out_dir,
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
