"""
Worker entrypoint for scheduled maintenance.

    python -m gigengine.worker sweep           # one pass
    python -m gigengine.worker sweep --loop    # every SWEEP_INTERVAL_SECONDS

Persists expiry for gigs whose expires_at has passed. The API process
keeps its own geo index and rebuilds it on its own sweeps, so this
process does not need one.
"""
import argparse
import asyncio
import logging

from gigengine.config import settings
from gigengine.database import AsyncSessionLocal, engine
from gigengine.services.sweeper import run_sweep, sweep_forever

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def worker_main(loop: bool = False, interval_seconds: float = settings.sweep_interval_seconds) -> int:
    try:
        if loop:
            await sweep_forever(AsyncSessionLocal, None, interval_seconds)
            return 0
        async with AsyncSessionLocal() as db:
            expired_ids = await run_sweep(db)
        print(f"Expired {len(expired_ids)} gigs.")
        return 0
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="gigengine.worker")
    commands = parser.add_subparsers(dest="command", required=True)
    sweep = commands.add_parser("sweep", help="Expire overdue gigs")
    sweep.add_argument("--loop", action="store_true", help="Keep sweeping on an interval")
    sweep.add_argument(
        "--interval",
        type=float,
        default=settings.sweep_interval_seconds,
        help="Seconds between passes with --loop",
    )
    args = parser.parse_args(argv)

    try:
        return asyncio.run(worker_main(loop=args.loop, interval_seconds=args.interval))
    except KeyboardInterrupt:
        logger.info("Worker stopped")
        return 0


if __name__ == "__main__":
    exit(main())
