"""
Command Line Interface

    profit-pipeline init-db
    profit-pipeline install <shop> --token <token> [--scope ...]
    profit-pipeline sync <shop> [--fixtures dataset.json]
    profit-pipeline metrics <shop>
    profit-pipeline cleanup <shop>
    profit-pipeline status <shop>

Every command prints a JSON document to stdout and exits 1 on failure.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, List, Optional

import structlog

from profit_pipeline.config import get_settings
from profit_pipeline.config.logging import configure_logging
from profit_pipeline.data.generators import ShopifyDataset
from profit_pipeline.database import (
    SQLAlchemyTenantStore,
    check_database_health,
    close_database,
    create_tables,
    get_session_factory,
    init_database,
)
from profit_pipeline.exceptions import PipelineError
from profit_pipeline.ingestion import run_day1_sync
from profit_pipeline.lifecycle import CleanupOrchestrator, TenantService
from profit_pipeline.metrics import MetricsJobRunner
from profit_pipeline.security import get_cipher

logger = structlog.get_logger(__name__)


def _print(document: Any) -> None:
    print(json.dumps(document, indent=2, default=str))


async def _open_store(database_url: Optional[str]) -> SQLAlchemyTenantStore:
    await init_database(database_url)
    await create_tables()
    return SQLAlchemyTenantStore(get_session_factory())


async def _init_db(args: argparse.Namespace) -> int:
    await _open_store(args.database_url)
    health = await check_database_health()
    _print({"success": health["status"] == "healthy", "database": health})
    return 0 if health["status"] == "healthy" else 1


async def _install(args: argparse.Namespace) -> int:
    store = await _open_store(args.database_url)
    record = await TenantService(store, get_cipher()).register_installation(args.shop, args.token, args.scope)
    _print(record)
    return 0


async def _sync(args: argparse.Namespace) -> int:
    store = await _open_store(args.database_url)
    settings = get_settings()
    runner = MetricsJobRunner(store, settings)

    source_factory = None
    if args.fixtures:
        dataset = ShopifyDataset.load(args.fixtures)

        def source_factory(tenant: str, access_token: str):
            return dataset.to_source_client(settings.shopify.page_size)

    result = await run_day1_sync(
        args.shop,
        store,
        source_factory=source_factory,
        settings=settings,
        metrics_runner=runner,
    )
    metrics = await runner.drain()

    payload = result.to_payload()
    if metrics:
        payload["metrics"] = [job.to_payload() for job in metrics[0]]
    _print(payload)
    return 0 if result.success else 1


async def _metrics(args: argparse.Namespace) -> int:
    store = await _open_store(args.database_url)
    results = await MetricsJobRunner(store).run_all(args.shop)
    _print([result.to_payload() for result in results])
    return 0 if all(result.success for result in results) else 1


async def _cleanup(args: argparse.Namespace) -> int:
    store = await _open_store(args.database_url)
    result = await CleanupOrchestrator(store, args.shop).run()
    _print(result.to_payload())
    return 0 if result.success else 1


async def _status(args: argparse.Namespace) -> int:
    store = await _open_store(args.database_url)
    _print(await TenantService(store, get_cipher()).sync_status(args.shop))
    return 0


COMMANDS = {
    "init-db": _init_db,
    "install": _install,
    "sync": _sync,
    "metrics": _metrics,
    "cleanup": _cleanup,
    "status": _status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="profit-pipeline", description="Shopify profit pipeline jobs")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy async URL (defaults to DATABASE_URL)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database tables")

    install = subparsers.add_parser("install", help="Register an installation and store its token")
    install.add_argument("shop")
    install.add_argument("--token", required=True)
    install.add_argument("--scope", default=None)

    sync = subparsers.add_parser("sync", help="Run the Day-1 sync, then the metrics jobs")
    sync.add_argument("shop")
    sync.add_argument("--fixtures", default=None, help="Generated dataset JSON to read instead of Shopify")

    for name, help_text in (
        ("metrics", "Recompute derived metrics"),
        ("cleanup", "Delete every record the shop owns"),
        ("status", "Show the tenant's sync status"),
    ):
        subparsers.add_parser(name, help=help_text).add_argument("shop")

    return parser


async def run(args: argparse.Namespace) -> int:
    try:
        return await COMMANDS[args.command](args)
    except PipelineError as exc:
        logger.error("Command failed", command=args.command, error=str(exc))
        _print({"success": False, "error": str(exc)})
        return 1
    finally:
        await close_database()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
