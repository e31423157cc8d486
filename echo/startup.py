"""
Startup utilities and the scheduler entry point for Echo

    python -m echo.startup init-db          create missing tables
    python -m echo.startup retry-webhooks   run one webhook retry sweep (cron)
"""
import argparse
import asyncio
import logging
from dataclasses import asdict

from echo.config import get_settings
from echo.core.database import close_db, init_db
from echo.core.log import setup_logging

logger = logging.getLogger("echo.startup")
settings = get_settings()


async def startup_tasks():
    """
    Run all startup tasks.
    """
    logger.info("Running startup tasks...")

    # Initialize database tables
    await init_db()
    logger.info("Database initialized")

    logger.info("Startup tasks completed")


async def shutdown_tasks():
    """
    Run all shutdown tasks.
    """
    logger.info("Running shutdown tasks...")
    await close_db()
    logger.info("Shutdown tasks completed")


async def retry_webhooks() -> dict:
    """One retry sweep over due webhook deliveries."""
    from echo.webhooks import WebhookDispatcher

    try:
        sweep = await WebhookDispatcher().process_failed_webhooks()
    finally:
        await close_db()
    logger.info("Webhook retry sweep finished: %s", asdict(sweep))
    return asdict(sweep)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="echo.startup", description="Echo maintenance tasks")
    parser.add_argument("task", choices=["init-db", "retry-webhooks"], nargs="?", default="retry-webhooks")
    args = parser.parse_args(argv)

    setup_logging(settings.log_level)

    if args.task == "init-db":
        asyncio.run(_init_only())
    else:
        asyncio.run(retry_webhooks())


async def _init_only():
    await startup_tasks()
    await shutdown_tasks()


if __name__ == "__main__":
    main()
