#!/usr/bin/env python3
"""
Proof Checks Runner
Runs the proof batch jobs outside the API, e.g. from cron.

Usage:
    python -m scripts.run_proof_checks [consistency|failure-rate|deliver|all]

Example crontab:
    0 2 * * *   cd backend && python -m scripts.run_proof_checks consistency
    0 * * * *   cd backend && python -m scripts.run_proof_checks failure-rate
"""
import json
import logging
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import LOG_LEVEL
from app.database import SessionLocal, init_db
from app.services.monitoring import FailureRateMonitor, ProofConsistencyChecker
from app.services.notifications import NotificationDispatcher

logger = logging.getLogger("run_proof_checks")

JOBS = {
    "consistency": lambda db: ProofConsistencyChecker(db).run(),
    "failure-rate": lambda db: FailureRateMonitor(db).run(),
    "deliver": lambda db: NotificationDispatcher(db).deliver_pending(),
}


def run(job_names) -> int:
    init_db()
    db = SessionLocal()
    exit_code = 0
    try:
        for name in job_names:
            try:
                result = JOBS[name](db)
                print(json.dumps({name: result}, default=str, indent=2))
            except Exception as e:
                db.rollback()
                logger.exception(f"Job {name} failed: {e}")
                exit_code = 1
    finally:
        db.close()
    return exit_code


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    choice = sys.argv[1] if len(sys.argv) > 1 else "all"
    if choice == "all":
        job_names = list(JOBS)
    elif choice in JOBS:
        job_names = [choice]
    else:
        print(__doc__)
        sys.exit(1)

    sys.exit(run(job_names))


if __name__ == "__main__":
    main()
