#!/usr/bin/env python3
"""CLI entrypoint for the campaign delivery pipeline."""

from __future__ import annotations

import argparse
import json
import sys

from loguru import logger

from campaigns.config import load_settings
from campaigns.db.models import MESSAGE_CHANNELS


def _cmd_worker(args) -> int:
    from campaigns.jobs.delivery import DeliveryWorker

    channels = None
    if args.channel == "email":
        channels = ["email"]
    elif args.channel == "message":
        channels = list(MESSAGE_CHANNELS)

    worker = DeliveryWorker()
    for _ in range(args.limit):
        result = worker.process_next(channels)
        print(json.dumps(result.to_dict()))
        if result.status == "idle":
            break
    return 0


def _cmd_run_job(args) -> int:
    from campaigns.errors import CampaignError
    from campaigns.jobs.delivery import DeliveryWorker

    try:
        result = DeliveryWorker().run_job(args.job_id)
    except CampaignError as exc:
        logger.error(f"[CLI] {exc.code}: {exc.message}")
        return 1
    print(json.dumps(result.to_dict()))
    return 0 if result.status == "completed" else 1


def _cmd_scheduler(args) -> int:
    from campaigns.jobs.scheduler import Scheduler

    result = Scheduler().run()
    print(json.dumps(result.to_dict()))
    return 1 if result.errors else 0


def _cmd_drain(args) -> int:
    from campaigns.db.base import SessionLocal
    from campaigns.jobs.queue import QueueRunner
    from campaigns.jobs.tasks import dispatch

    settings = load_settings()
    runner = QueueRunner(SessionLocal, timeout_seconds=settings.queue.timeout_seconds)
    stats = runner.drain(
        dispatch,
        args.type,
        max_jobs=args.max_jobs or settings.queue.max_jobs,
        inter_run_delay=settings.queue.inter_run_delay_seconds,
    )
    print(json.dumps(stats))
    return 0


def _cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("campaigns.api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Campaign delivery CLI")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="Run the oldest pending job(s)")
    worker.add_argument("--channel", choices=["email", "message"], help="email, or message for sms/chat")
    worker.add_argument("--limit", type=int, default=1)
    worker.set_defaults(func=_cmd_worker)

    run_job = sub.add_parser("run-job", help="Run a specific pending job")
    run_job.add_argument("--job-id", type=int, required=True)
    run_job.set_defaults(func=_cmd_run_job)

    scheduler = sub.add_parser("scheduler", help="Run one scheduler sweep")
    scheduler.set_defaults(func=_cmd_scheduler)

    drain = sub.add_parser("drain", help="Drain the generic job queue")
    drain.add_argument("--type", default=None, help="Only claim jobs of this type")
    drain.add_argument("--max-jobs", type=int, default=None)
    drain.set_defaults(func=_cmd_drain)

    serve = sub.add_parser("serve", help="Serve the HTTP triggers")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
