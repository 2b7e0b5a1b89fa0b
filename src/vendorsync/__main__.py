"""VendorSync command line.

Create the schema:
    python -m vendorsync init-db

Onboard a vendor and run it:
    python -m vendorsync create-vendor moscot "MOSCOT" --scraper-path ./scrapers/moscot
    python -m vendorsync run moscot --run-by ops@example.com

Inspect:
    python -m vendorsync query --vendor moscot --limit 20
    python -m vendorsync overview

Every command prints a JSON envelope and exits 1 when it is not ok.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

from dotenv import load_dotenv


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _credentials(args) -> Optional[Dict[str, Any]]:
    creds = {
        "type": args.type,
        "scraperPath": args.scraper_path,
        "apiBaseUrl": args.api_base_url,
        "apiAuthType": args.auth_type,
        "apiKey": args.api_key,
    }
    creds = {k: v for k, v in creds.items() if v is not None}
    return creds or None


def _add_credential_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--type", choices=["API", "SCRAPER"], default=None)
    p.add_argument("--scraper-path", default=None, help="Scraper executable")
    p.add_argument("--api-base-url", default=None, help="Catalog endpoint (http/https)")
    p.add_argument(
        "--auth-type", choices=["none", "bearer", "basic", "custom-header"], default=None
    )
    p.add_argument("--api-key", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vendorsync", description="VendorSync - vendor catalog sync engine"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL env or INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("vendors", help="List vendors with their sync state")

    p = sub.add_parser("create-vendor", help="Onboard a vendor")
    p.add_argument("slug")
    p.add_argument("display_name")
    _add_credential_flags(p)

    p = sub.add_parser("credentials", help="Create or update a vendor integration")
    p.add_argument("slug")
    _add_credential_flags(p)

    p = sub.add_parser("run", help="Sync one vendor")
    p.add_argument("slug")
    p.add_argument("--source", default="manual", choices=["manual", "automated"])
    p.add_argument("--run-by", default="cli")

    p = sub.add_parser("run-all", help="Sync every configured vendor")
    p.add_argument("--source", default="automated", choices=["manual", "automated"])
    p.add_argument("--run-by", default="cli")

    p = sub.add_parser("preview", help="Dry-run diff for one vendor")
    p.add_argument("slug")

    p = sub.add_parser("test", help="Probe vendor integrations")
    p.add_argument("slug", nargs="?", help="Vendor slug (default: all configured)")

    p = sub.add_parser("runs", help="Paginated run history")
    p.add_argument("slug")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--page-size", type=int, default=20)

    sub.add_parser("overview", help="Last-24h metrics and in-flight runs")

    p = sub.add_parser("query", help="Runs and alerts, newest first")
    p.add_argument("--vendor", default=None)
    p.add_argument("--start", default=None, help="ISO-8601, inclusive")
    p.add_argument("--end", default=None, help="ISO-8601, exclusive")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--cursor", default=None)

    p = sub.add_parser("alert", help="Ingest an operator alert")
    p.add_argument("level")
    p.add_argument("message")
    p.add_argument("--vendor", action="append", dest="vendors", default=None)

    p = sub.add_parser("scaffold", help="Generate an adapter stub and sample fixture")
    p.add_argument("slug")
    p.add_argument("--vendor-name", default=None)
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--force", action="store_true")

    p = sub.add_parser("validate", help="Check a registered adapter")
    p.add_argument("slug")

    return parser


async def dispatch(service, args) -> Dict[str, Any]:
    command = args.command

    if command == "init-db":
        await service.engine.db.create_all()
        return {"ok": True}
    if command == "vendors":
        return await service.list_vendors()
    if command == "create-vendor":
        return await service.create_vendor(args.slug, args.display_name, _credentials(args))
    if command == "credentials":
        return await service.save_credentials(args.slug, _credentials(args) or {})
    if command == "run":
        return await service.run_one(args.slug, source=args.source, run_by=args.run_by)
    if command == "run-all":
        return await service.run_all(source=args.source, run_by=args.run_by)
    if command == "preview":
        return await service.preview(args.slug)
    if command == "test":
        if args.slug:
            return await service.test_integration(args.slug)
        return await service.test_all()
    if command == "runs":
        return await service.list_runs(args.slug, page=args.page, page_size=args.page_size)
    if command == "overview":
        return await service.overview()
    if command == "query":
        params = {
            k: v
            for k, v in (
                ("vendor", args.vendor),
                ("start", args.start),
                ("end", args.end),
                ("limit", args.limit),
                ("cursor", args.cursor),
            )
            if v is not None
        }
        return await service.query_observability(params)
    if command == "alert":
        return await service.ingest_alert(
            {"level": args.level, "message": args.message, "vendors": args.vendors or []}
        )
    if command == "scaffold":
        return await service.scaffold_adapter(
            args.slug, vendor_name=args.vendor_name, dry_run=args.dry_run, force=args.force
        )
    if command == "validate":
        return await service.validate_adapter(args.slug)

    raise ValueError(f"unknown command {command}")


async def _run(args) -> Dict[str, Any]:
    from .service import build_service

    service = build_service()
    try:
        return await dispatch(service, args)
    finally:
        await service.engine.db.dispose()


def main(argv=None):
    """CLI entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    from .config import get_config

    setup_logging(args.log_level or get_config().log_level)
    logger = logging.getLogger(__name__)

    try:
        envelope = asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)

    print(json.dumps(envelope, indent=2, default=str))
    sys.exit(0 if envelope.get("ok") else 1)


if __name__ == "__main__":
    main()
