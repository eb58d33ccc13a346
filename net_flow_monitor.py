# PURPOSE: Main entry point for the application. Run this file.
# ==============================================================================
import argparse
import logging
import sys

import uvicorn

from netflowmon.core.config import BACKENDS, MonitorConfig
from netflowmon.core.monitor import NetworkMonitor
from netflowmon.core.sources import list_interfaces
from netflowmon.web.api import create_app

logger = logging.getLogger("netflowmon")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Connection-table network monitor with a live dashboard feed.")
    parser.add_argument("--host", help="Bind address (default 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Bind port (default 8000)")
    parser.add_argument("--backend", choices=BACKENDS, help="Snapshot source (default psutil)")
    parser.add_argument("--pid", type=int, dest="target_pid", help="Start in single-process mode for this PID")
    parser.add_argument("--poll-interval", type=float, help="Seconds between connection polls")
    parser.add_argument("--max-items", type=int, help="Capacity of each telemetry buffer")
    parser.add_argument("--no-activity", action="store_true", help="Disable the traffic activity estimate")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def build_config(args) -> MonitorConfig:
    config = MonitorConfig.from_env().with_overrides(
        host=args.host,
        port=args.port,
        backend=args.backend,
        target_pid=args.target_pid,
        poll_interval=args.poll_interval,
        max_items=args.max_items,
    )
    if args.no_activity:
        config = config.with_overrides(activity_enabled=False)
    return config


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    interfaces = list_interfaces()
    if config.backend != "simulated" and not interfaces:
        logger.warning("No network interfaces detected; monitoring will not start.")

    monitor = NetworkMonitor(config)
    app = create_app(monitor)

    print("\n--- Network Flow Monitor ---")
    print(f"Backend: {config.backend} | Interfaces: {len(interfaces)}")
    if config.target_pid is not None:
        print(f"Target process: PID {config.target_pid}")
    print(f"==> API and event feed on: http://{config.host}:{config.port} <==")
    print("---------------------------------")

    try:
        uvicorn.run(app, host=config.host, port=config.port, log_level=args.log_level.lower())
    except Exception as e:
        logger.error("An error occurred during server execution: %s", e)
        return 1
    finally:
        print("Monitoring stopped.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
