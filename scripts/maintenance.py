"""
Maintenance jobs for Circdesk, meant to be run from cron:

    python scripts/maintenance.py seed              # default categories & preferences
    python scripts/maintenance.py expire-holds      # cancel holds not picked up in time
    python scripts/maintenance.py overdue-notices   # notify patrons of overdue loans
"""

import argparse
import sys
import logging
from dotenv import load_dotenv

load_dotenv()

from circdesk.core import circulation, holds
from circdesk.core.db import session, init as db_init
from circdesk.core.exceptions import CircdeskError
from circdesk.core.policy import seed

logger = logging.getLogger(__name__)

JOBS = {
    "seed": lambda db: f"{seed(db)} default rows added",
    "expire-holds": lambda db: f"{len(holds.expire_waiting(db))} holds expired",
    "overdue-notices": lambda db: f"{len(circulation.notify_overdue(db))} overdue notices sent",
}

def main():
    parser = argparse.ArgumentParser(description="Run a Circdesk maintenance job")
    parser.add_argument("job", choices=sorted(JOBS))
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        db_init()
        print(f"Success! {JOBS[args.job](session)}.")
    except CircdeskError as e:
        print(f"{e.kind}:{e.reason}: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        session.remove()

if __name__ == "__main__":
    main()
