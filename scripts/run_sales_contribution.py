from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import date
from typing import Optional

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute the sales contribution report for a date window.")
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Path to .env file.",
    )
    parser.add_argument("--from-date", type=parse_date, default=None, help="Window start (YYYY-MM-DD).")
    parser.add_argument("--to-date", type=parse_date, default=None, help="Window end (YYYY-MM-DD).")
    parser.add_argument(
        "--employee-id",
        type=int,
        default=None,
        help="Print a single employee's result instead of the full report.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.api.dependencies import get_sales_contribution_service
    from src.shared.time import resolve_report_window

    service = get_sales_contribution_service()
    start, end = resolve_report_window(args.from_date, args.to_date)
    if args.employee_id is not None:
        result = asyncio.run(service.get_employee_result(args.employee_id, start, end))
    else:
        result = asyncio.run(service.get_report(start, end))
    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))


if __name__ == "__main__":
    main()
