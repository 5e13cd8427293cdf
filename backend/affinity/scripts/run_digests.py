# backend/affinity/scripts/run_digests.py

"""
Run notification digests once, outside the cron timer.

Usage examples:

  # All three cadences, sending for real
  cd backend
  python -m affinity.scripts.run_digests

  # Weekly only, logging the rendered emails instead of sending them
  python -m affinity.scripts.run_digests --cadence weekly --dry-run
"""

import argparse
import logging
import sys

from affinity.core.config import settings
from affinity.scheduler import DigestScheduler
from affinity.services.mailer import ResendMailer
from affinity.services.preferences import UnknownCadenceError


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Send notification digests now.")
    parser.add_argument(
        "--cadence",
        choices=["daily", "weekly", "monthly"],
        help="Run a single cadence (default: all three).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Render and log emails without sending them.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    run_settings = settings
    if args.dry_run:
        # ResendMailer logs instead of sending when no API key is configured
        run_settings = settings.model_copy(update={"RESEND_API_KEY": None})

    scheduler = DigestScheduler(mailer=ResendMailer(run_settings), settings=run_settings)
    try:
        summaries = scheduler.run_now(args.cadence)
    except UnknownCadenceError as e:
        print(f"Error: {e}")
        return 2

    for summary in summaries:
        print(
            f"{summary.cadence}: users={summary.users} sent={summary.digests_sent} "
            f"failures={summary.failures} since={summary.since.isoformat()}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
