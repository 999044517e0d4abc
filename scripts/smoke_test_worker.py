#!/usr/bin/env python3
import os
import sys

from sqlalchemy import text

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '../src'))

from campaigns.db.base import SessionLocal
from campaigns.db.models import QueueJob
from campaigns.jobs.queue import QueueService

SMOKE_KEY = "smoke-test"


def smoke_test():
    print("[SmokeTest] Starting...")
    session = SessionLocal()
    try:
        print("[SmokeTest] Checking DB Connectivity...")
        session.execute(text("SELECT 1"))
        print("[SmokeTest] DB Connected.")

        # Test 1: idempotent enqueue
        first = QueueService.enqueue(session, "smoke.noop", {}, idempotency_key=SMOKE_KEY)
        second = QueueService.enqueue(session, "smoke.noop", {}, idempotency_key=SMOKE_KEY)
        if first != second:
            print(f"[SmokeTest] FAIL: duplicate live job for key ({first} != {second}).")
            return 1
        print(f"[SmokeTest] Idempotent enqueue worked: job {first}.")

        # Test 2: a job can only be claimed once
        task = QueueService.try_claim(session, first)
        again = QueueService.try_claim(session, first)
        if task is None or again is not None:
            print("[SmokeTest] FAIL: claim was not exclusive.")
            return 1
        print("[SmokeTest] Claim is exclusive.")

        # Cleanup
        session.delete(session.get(QueueJob, first))
        session.commit()
        print("[SmokeTest] Cleanup complete.")

    except Exception as e:
        print(f"[SmokeTest] ERROR: {e}")
        return 1
    finally:
        session.close()

    print("[SmokeTest] PASSED.")
    return 0


if __name__ == "__main__":
    sys.exit(smoke_test())
