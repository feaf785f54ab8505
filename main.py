"""
PLC Link — Entry Point
=======================
Launch the link controller with the CLI console or headless.

Usage:
  python main.py                               # CLI console, settings defaults
  python main.py --simulate                    # CLI console against a loopback PLC simulator
  python main.py --tcp HOST:PORT[:CLIENT_PORT] # Connect over TCP
  python main.py --udp LISTEN:HOST:PORT        # Connect over UDP
  python main.py --headless --tcp HOST:PORT    # Stream frames, no console
"""

import argparse
import logging
import signal
import sys

from plclink.config.settings import Settings
from plclink.core.controller import LinkController
from plclink.core.errors import ConnectError
from plclink.drivers.simulator import PLCSimulator
from plclink.drivers.transport import TcpConfig, UdpConfig


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="PLC operator link (fixed-frame TCP/UDP protocol)"
    )
    parser.add_argument(
        "--tcp",
        help="TCP server address (host:port[:client_port])"
    )
    parser.add_argument(
        "--udp",
        help="UDP endpoints (listen_port:target_host:target_port)"
    )
    parser.add_argument(
        "--simulate", action="store_true",
        help="Run a loopback PLC simulator and connect to it"
    )
    parser.add_argument(
        "--headless", action="store_true",
        help="Run the link without console (headless mode)"
    )
    parser.add_argument(
        "--interval-ms", type=int,
        help="Transmit interval in milliseconds"
    )
    parser.add_argument(
        "--settings",
        help="Path to settings JSON file"
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--log-file",
        help="Log to file instead of stderr"
    )
    return parser.parse_args(argv)


def parse_tcp(value: str) -> TcpConfig:
    """host:port[:client_port]"""
    parts = value.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected host:port[:client_port], got {value!r}")
    local = int(parts[2]) if len(parts) == 3 else 0
    return TcpConfig(host=parts[0], port=int(parts[1]), local_port=local)


def parse_udp(value: str) -> UdpConfig:
    """listen_port:target_host:target_port"""
    parts = value.split(":")
    if len(parts) != 3:
        raise ValueError(f"Expected listen_port:host:port, got {value!r}")
    return UdpConfig(
        listen_port=int(parts[0]), target_host=parts[1], target_port=int(parts[2])
    )


def main(argv=None):
    args = parse_args(argv)

    # Configure logging
    log_kwargs = {
        "level": getattr(logging, args.log_level),
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    }
    if args.log_file:
        log_kwargs["filename"] = args.log_file
    logging.basicConfig(**log_kwargs)

    # Load configuration
    settings = Settings.load(args.settings) if args.settings else Settings()
    if args.interval_ms is not None and not settings.update("send_interval_ms", args.interval_ms):
        print(f"Invalid interval: {args.interval_ms}")
        sys.exit(2)

    controller = LinkController(settings)

    sim = None
    try:
        if args.simulate:
            sim = PLCSimulator()
            controller.configure(TcpConfig(host="127.0.0.1", port=sim.start_tcp()))
        elif args.tcp:
            controller.configure(parse_tcp(args.tcp))
        elif args.udp:
            controller.configure(parse_udp(args.udp))
    except ValueError as exc:
        print(f"Invalid address: {exc}")
        sys.exit(2)

    # Handle SIGINT/SIGTERM gracefully
    def signal_handler(sig, frame):
        controller.close()
        if sim:
            sim.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if args.simulate or args.tcp or args.udp or args.headless:
            try:
                controller.connect()
            except ConnectError as exc:
                print(f"Connection failed: {exc}")
                if args.headless:
                    sys.exit(1)

        if args.headless:
            print("PLC link running (headless mode). Press Ctrl+C to stop.")
            signal.pause()
        else:
            from console.cli import run_cli
            run_cli(controller)
    finally:
        controller.close()
        if sim:
            sim.stop()


if __name__ == "__main__":
    main()
