"""
Hold Expiry Sweep Job

Cancels pending reservations whose hold has expired so their slots become
bookable again. Safe to run from several schedulers at once.

Run command:
    python -m roombook.app.jobs.sweep_holds
    python -m roombook.app.jobs.sweep_holds --interval 60
"""
import argparse
import asyncio
import logging

from roombook.app.core.errors import StorageError
from roombook.app.core.logging_config import configure_logging
from roombook.app.db.session import SessionLocal, engine
from roombook.app.services.sweeper import run_sweeper, sweep

logger = logging.getLogger(__name__)


async def run_once() -> int:
    async with SessionLocal() as session:
        result = await sweep(session)
    logger.info("Sweep job completed: cancelled=%s failed=%s", result.cancelled, result.failed)
    return result.cancelled


async def _main(interval: float | None) -> int:
    try:
        if interval:
            await run_sweeper(SessionLocal, interval)
            return 0
        await run_once()
        return 0
    except StorageError:
        logger.error("Sweep job failed", exc_info=True)
        return 1
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Cancel expired reservation holds")
    parser.add_argument("--interval", type=float, default=None, help="keep sweeping every N seconds")
    args = parser.parse_args(argv)

    configure_logging()
    return asyncio.run(_main(args.interval))


if __name__ == "__main__":
    raise SystemExit(main())
