#!/usr/bin/env python3
"""리프레시 스케줄러 tick 을 HTTP 로 한 번 트리거하는 스크립트.

외부 cron 에서 호출하는 용도:
    */5 * * * * python scripts/run_scheduler_tick.py --base-url http://localhost:8000
"""

import argparse
import os
import sys

import httpx


def run_tick(base_url: str, token: str, timeout: float) -> int:
    url = f"{base_url.rstrip('/')}/api/v1/refresh/scheduler"
    try:
        response = httpx.post(
            url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        print(f"Scheduler request failed: {e}", file=sys.stderr)
        return 1

    if response.status_code != 200:
        print(f"Scheduler returned {response.status_code}: {response.text}", file=sys.stderr)
        return 1

    data = response.json()
    print(f"Processed {data['schedulesProcessed']} schedule(s)")
    for result in data.get("results", []):
        line = f"  {result['scheduleId']}: {result['status']}"
        if result.get("error"):
            line += f" ({result['error']})"
        print(line)
    for schedule_id in data.get("skipped", []):
        print(f"  {schedule_id}: skipped (still running)")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Trigger one refresh scheduler tick")
    parser.add_argument("--base-url", default=os.environ.get("REFRESH_API_URL", "http://localhost:8000"))
    parser.add_argument("--token", default=os.environ.get("SCHEDULER_TOKEN"))
    parser.add_argument("--timeout", type=float, default=600.0)
    args = parser.parse_args()

    if not args.token:
        print("SCHEDULER_TOKEN is not set", file=sys.stderr)
        sys.exit(2)

    sys.exit(run_tick(args.base_url, args.token, args.timeout))


if __name__ == "__main__":
    main()
