#!/usr/bin/env python
"""
Check Connection Script.

Verifies that the reporter settings reach a ReportPortal server before a
test run is started.

Usage:
    python scripts/check_connection.py
    python scripts/check_connection.py --config config/report_portal.yaml
    python scripts/check_connection.py --timeout 10 --verbose
"""

import argparse
import sys

from loguru import logger

# Add project root to path
sys.path.insert(0, ".")

from product_report.config.loader import ConfigLoader
from product_report.config.settings import ConfigurationError, ReportConfig
from product_report.session import ConnectivityStatus, ReportSession


def parse_args():
    """Parse command-line arguments for the connectivity check."""
    parser = argparse.ArgumentParser(
        description="Product Report — ReportPortal connectivity check"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="",
        help="Reporter settings file (default: REPORT_PORTAL_* environment)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the server to answer (default: 30)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    return parser.parse_args()


def load_config(path: str) -> ReportConfig:
    """Load reporter settings from a file, or from the environment."""
    if path:
        return ConfigLoader(config_dir=".").load(path)
    return ReportConfig.from_env()


def main():
    """Main entry point for the connectivity check."""
    args = parse_args()

    if not args.verbose:
        logger.remove()
        logger.add(sys.stderr, level="INFO")

    try:
        config = load_config(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error(f"[Check] Invalid reporter configuration: {e}")
        return 2

    logger.info(f"[Check] Project: {config.project}")
    logger.info(f"[Check] Launch: {config.launch_name}")
    logger.info(f"[Check] Endpoint: {config.api_url}")
    if config.launch_id_override:
        logger.info(f"[Check] Reusing launch: {config.launch_id_override}")

    session = ReportSession(config)
    try:
        status = session.wait_for_connectivity(timeout=args.timeout)
    finally:
        session.close()

    if status is ConnectivityStatus.CONNECTED:
        logger.info("[Check] ReportPortal is reachable")
        return 0
    if status is ConnectivityStatus.PENDING:
        logger.error(f"[Check] No answer from ReportPortal within {args.timeout}s")
    else:
        logger.error("[Check] ReportPortal rejected the connection")
    return 1


if __name__ == "__main__":
    sys.exit(main())
