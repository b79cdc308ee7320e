"""
Run a scheduled sweep once, outside Celery beat (cron fallback, manual backfills).

Usage:
  python scripts/run_sweeps.py growth
  python scripts/run_sweeps.py quarterly --today 2026-01-31
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one well-wisher sweep.")
    parser.add_argument("job", choices=["growth", "quarterly"])
    parser.add_argument("--today", help="Pretend the sweep runs on this date (YYYY-MM-DD).")
    args = parser.parse_args(argv)

    today = None
    if args.today:
        try:
            today = datetime.strptime(args.today, "%Y-%m-%d")
        except ValueError:
            parser.error("--today must be YYYY-MM-DD")

    from app.adoptrees import create_app
    from app.adoptrees.db import session_scope
    from app.adoptrees.scheduling import run_job

    app = create_app()
    with app.app_context():
        with session_scope(app) as s:
            result = run_job(s, args.job, today=today)
    print(json.dumps(result, indent=2), flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
