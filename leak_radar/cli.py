"""
Command line entry point for operating the revenue scan.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Callable

from .arr import calculate_arr, determine_pricing_tier
from .billing_client import StripeClientFactory, configure_stripe
from .config import Settings
from .credentials import CredentialCipher
from .db import create_db_engine, init_db, make_session_factory
from .errors import LeakRadarError
from .scan import build_orchestrator
from .store import RevenueStore

LOG = logging.getLogger("leak_radar.cli")


def _configure_logging(verbose: bool, level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(logging, level, logging.INFO))
    root.handlers[:] = [handler]


def _print_json(payload) -> None:
    json.dump(payload, sys.stdout, indent=2, sort_keys=True)
    sys.stdout.write("\n")


def _command_init_db(args: argparse.Namespace, settings: Settings) -> int:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    LOG.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return 0


def _command_scan(args: argparse.Namespace, settings: Settings) -> int:
    orchestrator = build_orchestrator(settings)
    if args.organization:
        outcome = orchestrator.scan_organization(args.organization)
        _print_json({
            "organizationId": outcome.organization_id,
            "issuesFound": outcome.issues_found,
            "currentMRR": outcome.current_mrr,
            "totalRevenueAtRisk": outcome.total_revenue_at_risk,
            "isPartial": outcome.is_partial,
        })
        return 0
    _print_json(orchestrator.run_daily_scan().to_dict())
    return 0


def _command_arr(args: argparse.Namespace, settings: Settings) -> int:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    store = RevenueStore(make_session_factory(engine))
    configure_stripe(settings.stripe_max_retries)
    factory = StripeClientFactory(
        store.get_billing_link,
        CredentialCipher.from_settings(settings),
        api_version=settings.stripe_api_version,
    )
    result = calculate_arr(
        factory(args.organization),
        max_pages=settings.scan_max_pages,
        page_size=settings.scan_page_size,
    )
    payload = result.to_dict()
    payload["pricing"] = determine_pricing_tier(result.arr)
    _print_json(payload)
    return 0


def _command_generate_key(args: argparse.Namespace, settings: Settings) -> int:
    sys.stdout.write(CredentialCipher.generate_key() + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leak-radar",
        description="Revenue Leak Radar scan and maintenance commands",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db_cmd = subparsers.add_parser("init-db", help="Create the database tables.")
    init_db_cmd.set_defaults(handler=_command_init_db)

    scan = subparsers.add_parser("scan", help="Run the daily revenue scan now.")
    scan.set_defaults(handler=_command_scan)
    scan.add_argument("--organization", help="Scan a single organization instead of all connected ones.")

    arr = subparsers.add_parser("arr", help="Calculate ARR and the pricing tier for an organization.")
    arr.set_defaults(handler=_command_arr)
    arr.add_argument("--organization", required=True, help="Organization id with a linked Stripe account.")

    keygen = subparsers.add_parser("generate-key", help="Print a new ENCRYPTION_KEY value.")
    keygen.set_defaults(handler=_command_generate_key)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = Settings.from_env()
    except LeakRadarError as exc:
        _configure_logging(args.verbose)
        LOG.error("%s", exc)
        return 2
    _configure_logging(args.verbose, settings.log_level)
    handler: Callable[[argparse.Namespace, Settings], int] = getattr(args, "handler")
    try:
        return handler(args, settings)
    except LeakRadarError as exc:
        LOG.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        LOG.warning("Cancelled by user.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
