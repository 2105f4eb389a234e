#!/usr/bin/env python3
"""
Modbus Session Service - Main Entry Point

Loads the YAML configuration and runs the session service until SIGINT
or SIGTERM.

Usage:
    gxsession                        # Use config.yaml
    gxsession --config my.yaml       # Use custom config file
    gxsession --dry-run              # Print config summary and exit
"""

import argparse
import asyncio
import sys

from gxsession.common.config import SessionConfig, load_session_config_file
from gxsession.common.exceptions import ConfigError
from gxsession.common.logging_setup import get_service_logger, set_log_level
from gxsession.services.session.service import SessionService

logger = get_service_logger("main")


def print_config_summary(config: SessionConfig) -> None:
    """Print a summary of the configuration."""
    settings = config.service
    print("\n" + "=" * 60)
    print("  MODBUS SESSION SERVICE")
    print("=" * 60)

    print(f"\n  Health server: {settings.health_host}:{settings.health_port}")
    print(f"  Settle delay: {settings.settle_delay_s}s")
    print(f"  Connection timeout: {settings.connection_timeout_s}s")
    print(f"  Rebuild socket on new unit: {'yes' if settings.rebuild_on_new_unit else 'no'}")

    print(f"\n  Sockets: {len(config.get_socket_keys())}")
    print(f"  Consumers: {len(config.targets)}")
    for target in config.targets:
        consumer = target.consumer
        interval = f"every {consumer.refresh_interval}s" if consumer.polls else "attach only"
        print(
            f"    - {consumer.identity} @ {target.host}:{target.port}:{target.unit_id} "
            f"-> '{consumer.event_name}' ({len(consumer.info_registries)} info, "
            f"{len(consumer.reading_registries)} reading, {interval})"
        )

    print("=" * 60 + "\n")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Shared Modbus-TCP sessions with per-consumer polling"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without starting the service"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    args = parser.parse_args(argv)

    try:
        config = load_session_config_file(args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    set_log_level("DEBUG" if args.verbose else config.service.log_level)

    print_config_summary(config)

    if args.dry_run:
        print("Dry run mode - exiting without starting the service")
        return 0

    logger.info("Starting session service...")

    try:
        asyncio.run(SessionService(config).start())
    except KeyboardInterrupt:
        print("\nStopped by user")

    return 0


if __name__ == "__main__":
    sys.exit(main())
