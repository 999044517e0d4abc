#!/usr/bin/env python3
import argparse
import os
import sys

from sqlalchemy import select

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '../src'))

from campaigns.db.base import SessionLocal
from campaigns.db.models import MESSAGE_CHANNELS, CampaignJob, JobStatus
from campaigns.jobs.delivery import DeliveryWorker
from loguru import logger

MAX_JOBS_PER_INVOCATION = 3


def has_pending_jobs(session, channels) -> bool:
    stmt = select(CampaignJob.id).where(CampaignJob.status == JobStatus.PENDING)
    if channels:
        stmt = stmt.where(CampaignJob.channel.in_(channels))
    return session.execute(stmt.limit(1)).scalar_one_or_none() is not None


def main() -> int:
    parser = argparse.ArgumentParser(description="Cron entrypoint for the delivery worker")
    parser.add_argument("--channel", choices=["email", "message"], default=None)
    args = parser.parse_args()

    # Setup logger to stdout/stderr for systemd
    logger.remove()
    logger.add(sys.stdout, level="INFO")

    channels = None
    if args.channel == "email":
        channels = ["email"]
    elif args.channel == "message":
        channels = list(MESSAGE_CHANNELS)

    with SessionLocal() as session:
        if not has_pending_jobs(session, channels):
            print("[worker] No pending jobs, exiting")
            return 0

    try:
        worker = DeliveryWorker()
        for _ in range(MAX_JOBS_PER_INVOCATION):
            result = worker.process_next(channels)
            print(f"[worker] Result: {result.to_dict()}")
            if result.status == "idle":
                break
    except Exception as exc:
        print(f"[worker] ERROR: {exc}", file=sys.stderr)
        logger.exception("Worker failed")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
