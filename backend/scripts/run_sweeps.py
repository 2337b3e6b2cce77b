#!/usr/bin/env python3
"""
Subscription Sweep Runner

Runs the background subscription sweeps: trial expiry notices, failed
payment handling, renewals, then expired subscription cleanup.
Run as a cron job or manually: python -m scripts.run_sweeps

Usage:
    python -m scripts.run_sweeps                    # Run every sweep
    python -m scripts.run_sweeps --sweep renewals   # Run one sweep
"""

import asyncio
import argparse
import logging
from typing import List

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from kraftivibe.domain.subscription_dto import SweepName, SweepResult
from kraftivibe.infrastructure.db.database import close_db, get_session_context, init_db
from kraftivibe.infrastructure.db.repositories import SubscriptionRepository
from kraftivibe.infrastructure.payments.stripe_service import get_stripe_service
from kraftivibe.infrastructure.services.subscription_service import SubscriptionService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_sweeps(sweeps: List[SweepName]) -> List[SweepResult]:
    """
    Run the given sweeps in order, each in its own session.

    A sweep that fails to load its candidates is logged and the next
    sweep still runs.
    """
    results = []
    await init_db()

    try:
        for sweep in sweeps:
            try:
                async with get_session_context() as session:
                    service = SubscriptionService(
                        SubscriptionRepository(session),
                        payment_gateway=get_stripe_service(),
                    )
                    results.append(await service.run_sweep(sweep))
            except Exception as e:
                logger.error(f"Sweep {sweep.value} aborted: {e}")
                results.append(SweepResult(sweep=sweep.value, failed=1))
    finally:
        await close_db()

    return results


async def main():
    parser = argparse.ArgumentParser(description="Run background subscription sweeps")
    parser.add_argument(
        "--sweep",
        choices=[sweep.value for sweep in SweepName],
        help="Run only this sweep (default: all, in order)"
    )
    args = parser.parse_args()

    sweeps = [SweepName(args.sweep)] if args.sweep else list(SweepName)
    results = await run_sweeps(sweeps)

    print("\n=== Sweeps Complete ===")
    for result in results:
        print(
            f"{result.sweep}: found={result.found} processed={result.processed} "
            f"skipped={result.skipped} failed={result.failed}"
        )


if __name__ == "__main__":
    asyncio.run(main())
