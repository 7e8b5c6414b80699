"""
Main entrypoint: API server + stale-session scheduler, and one-shot commands.

Usage:
    python -m wialon_sync serve [--host 0.0.0.0] [--port 8000]
    python -m wialon_sync sync                     # one sync run, then exit
    python -m wialon_sync check                    # test Wialon credentials
    python -m wialon_sync purge-logs --older-than-days 30
"""
import argparse
import asyncio
import logging
import sys
from datetime import timedelta

from wialon_sync.config import get_settings

logging.basicConfig(
    level=(get_settings().log_level or "INFO").upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _serve(host: str, port: int) -> None:
    import uvicorn

    from wialon_sync.api.main import app
    from wialon_sync.db.engine import get_engine
    from wialon_sync.scheduler.jobs import build_scheduler

    settings = get_settings()
    engine = get_engine()

    scheduler = build_scheduler(engine)
    scheduler.start()
    logger.info(
        "Scheduler started (stale session sweep every %d minutes)",
        settings.stale_sweep_interval_minutes,
    )

    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
    try:
        await server.serve()
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


async def _sync_once(user_id: int) -> int:
    from wialon_sync.db.engine import get_engine
    from wialon_sync.sync.service import SyncRunError, WialonSyncService
    from wialon_sync.sync.sessions import SyncAlreadyRunningError
    from wialon_sync.wialon.client import WialonClient

    async with WialonClient() as client:
        service = WialonSyncService(client=client, engine=get_engine())
        try:
            result = await service.run(user_id)
        except SyncAlreadyRunningError as exc:
            logger.error("%s", exc)
            return 1
        except SyncRunError as exc:
            logger.error("Sync session %s failed: %s", exc.session_id, exc)
            return 1

    logger.info("Sync session %s completed: %s", result.session.id, result.stats())
    return 0


async def _check() -> int:
    from wialon_sync.wialon.client import IntegrationUnavailableError, WialonClient

    async with WialonClient() as client:
        try:
            await client.login()
        except IntegrationUnavailableError as exc:
            logger.error("Wialon check failed: %s", exc)
            return 1
    logger.info("Wialon credentials OK")
    return 0


def _purge_logs(older_than_days: int) -> int:
    from sqlmodel import Session

    from wialon_sync.db.engine import get_engine
    from wialon_sync.db.types import utcnow
    from wialon_sync.sync.sessions import purge_logs

    cutoff = utcnow() - timedelta(days=older_than_days)
    with Session(get_engine()) as db:
        deleted = purge_logs(db, older_than=cutoff)
    logger.info("Deleted %d sync logs older than %s", deleted, cutoff.isoformat())
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="wialon_sync", description="Wialon reconciliation service")
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the API and the stale-session sweep")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    sync = commands.add_parser("sync", help="Run one sync and exit")
    sync.add_argument("--user-id", type=int, default=None, help="Recorded as the session creator")

    commands.add_parser("check", help="Log in to Wialon with the configured token")

    purge = commands.add_parser("purge-logs", help="Delete old sync logs")
    purge.add_argument("--older-than-days", type=int, required=True)

    args = parser.parse_args(argv)

    if args.command == "sync":
        return asyncio.run(_sync_once(args.user_id or get_settings().user_id))
    if args.command == "check":
        return asyncio.run(_check())
    if args.command == "purge-logs":
        return _purge_logs(args.older_than_days)
    if args.command in (None, "serve"):
        asyncio.run(_serve(getattr(args, "host", "0.0.0.0"), getattr(args, "port", 8000)))
        return 0
    parser.error(f"unknown command {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
