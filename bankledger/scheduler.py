"""
Run due scheduled payments once and exit.

Meant to be driven by cron or a systemd timer:

    python -m bankledger.scheduler
    python -m bankledger.scheduler --date 2026-01-31
"""

import argparse
import asyncio
import logging
from datetime import date

from bankledger.database import AsyncSessionLocal, Base, engine
from bankledger.logging_config import setup_logging
from bankledger.services.scheduled_payment_service import run_due_payments

logger = logging.getLogger("bankledger.scheduler")


async def _run(today: date | None) -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        outcomes = await run_due_payments(AsyncSessionLocal, today=today)
    finally:
        await engine.dispose()

    failed = [o for o in outcomes if not o.succeeded]
    logger.info("Processed %d scheduled payment(s), %d failed", len(outcomes), len(failed))
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Execute scheduled payments that are due.")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Treat this ISO date as today (default: current UTC date)",
    )
    args = parser.parse_args(argv)

    setup_logging()
    return asyncio.run(_run(args.date))


if __name__ == "__main__":
    raise SystemExit(main())
