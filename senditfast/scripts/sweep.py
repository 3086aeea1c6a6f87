"""Expiration sweep as its own process.

    python -m senditfast.scripts.sweep            # one run, for cron
    python -m senditfast.scripts.sweep --loop     # long-running worker
"""

import argparse
import asyncio
import json
import logging
import sys

from senditfast.core.config import settings
from senditfast.core.database import SessionLocal
from senditfast.storage import build_storage_gateway
from senditfast.tasks.cleanup import reap_orphaned_uploads, run_expiration_sweep, start_cleanup_task

logger = logging.getLogger("senditfast")


async def run_once(batch_size: int) -> dict:
    storage = build_storage_gateway(settings)
    async with SessionLocal() as db:
        result = await run_expiration_sweep(db, storage, batch_size=batch_size)
        reaped = await reap_orphaned_uploads(db, storage)
    return dict(result.as_dict(), orphansReaped=reaped)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Expire transfers and delete their stored objects.")
    parser.add_argument("--loop", action="store_true", help="keep running every --interval seconds")
    parser.add_argument("--interval", type=int, default=settings.SWEEP_INTERVAL_SECONDS)
    parser.add_argument("--batch-size", type=int, default=settings.SWEEP_BATCH_SIZE)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    if args.loop:
        try:
            asyncio.run(start_cleanup_task(build_storage_gateway(settings), args.interval))
        except KeyboardInterrupt:
            logger.info("Sweep worker stopped")
        return 0

    result = asyncio.run(run_once(args.batch_size))
    print(json.dumps(result))
    return 1 if result["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
