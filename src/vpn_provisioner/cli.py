"""Command line interface for provisioning runs."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from .errors import ProvisioningError
from .pipeline import ProvisioningPipeline
from .settings import load_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vpn-provisioner",
        description="Provision OpenVPN PKI material and client bundles",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON settings file (default: $VPN_PKI_CONFIG or built-in defaults)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("provision", help="Run the full provisioning pipeline for the roster")

    add_client = subparsers.add_parser("add-client", help="Provision one client in addition to the roster")
    add_client.add_argument("name", help="Client name")

    revoke = subparsers.add_parser("revoke", help="Revoke a client certificate and refresh the CRL")
    revoke.add_argument("name", help="Client name")

    export = subparsers.add_parser("export", help="Export rendered bundles to the output directory")
    export.add_argument("names", nargs="*", help="Client names (default: whole roster)")

    subparsers.add_parser("status", help="Show what exists in the identity store")

    return parser


def _print_report(report) -> None:
    for stage, outcome in report.steps.items():
        print(f"{stage:<22} {outcome.value}")
    for client in report.clients:
        if client.failed:
            print(f"client {client.name:<15} FAILED  {client.error}")
        else:
            print(f"client {client.name:<15} ok      {client.bundle_path}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Entry point for the vpn-provisioner command.

    Returns:
        0 on success, 1 on fatal error, 2 if some clients failed
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        settings = load_settings(args.config)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    pipeline = ProvisioningPipeline(settings)

    try:
        if args.command == "provision":
            report = pipeline.run()
            _print_report(report)
            return EXIT_OK if report.succeeded else EXIT_PARTIAL

        if args.command == "add-client":
            report = pipeline.run(roster=[args.name])
            _print_report(report)
            if args.name not in settings.clients:
                logger.warning(f"Client {args.name} is not in the configured roster; add it to keep it provisioned")
            return EXIT_OK if report.succeeded else EXIT_PARTIAL

        if args.command == "revoke":
            serial_number = pipeline.revoke_client(args.name)
            print(f"Revoked {args.name} (serial: {serial_number})")
            return EXIT_OK

        if args.command == "export":
            failed = False
            for name in args.names or settings.clients:
                try:
                    pipeline.exporter.export(name)
                    print(pipeline.exporter.export_path(name))
                except ProvisioningError as e:
                    logger.error(f"Export failed for {name}: {e}")
                    failed = True
            return EXIT_PARTIAL if failed else EXIT_OK

        if args.command == "status":
            print(json.dumps(pipeline.status(), indent=2))
            return EXIT_OK

    except ProvisioningError as e:
        logger.error(f"Provisioning failed: {e}")
        return EXIT_FATAL

    parser.error(f"Unknown command: {args.command}")
    return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
