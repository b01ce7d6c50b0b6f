"""Run the stuck-job sweep once; meant for cron when Cloud Scheduler is not available."""

import logging

from workforce.db.session import SessionLocal
from workforce.hr_import.service import reclaim_stale_jobs


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    db = SessionLocal()
    try:
        outcome = reclaim_stale_jobs(db)
    finally:
        db.close()
    print(
        f"timed_out={len(outcome['timed_out'])} redispatched={len(outcome['redispatched'])} "
        f"exhausted={len(outcome['exhausted'])}"
    )


if __name__ == "__main__":
    main()
