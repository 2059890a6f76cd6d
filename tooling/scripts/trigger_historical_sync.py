#!/usr/bin/env python3
"""Enqueue a historical POS backfill through the relay admin API.

Usage:
    python tooling/scripts/trigger_historical_sync.py \
        --base-url https://relay.example.com \
        --api-key "$ADMIN_API_KEY" \
        --start-date 2026-09-01 --end-date 2026-09-30 --wait

With ``--wait`` the script polls the job until it settles and exits non-zero
when the backfill job ends up failed.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from typing import Any, Dict, Optional

import httpx

TERMINAL_STATES = {"completed", "failed"}


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value}") from exc


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trigger a loyalty relay historical sync")
    parser.add_argument(
        "--base-url",
        default="http://localhost:3000",
        help="Base URL of the loyalty relay service.",
    )
    parser.add_argument("--api-key", default=None, help="Admin API key, when the service requires one.")
    parser.add_argument("--start-date", type=_iso_date, required=True, help="First day to replay (YYYY-MM-DD).")
    parser.add_argument("--end-date", type=_iso_date, required=True, help="Last day to replay (YYYY-MM-DD).")
    parser.add_argument("--wait", action="store_true", help="Poll until the job completes or fails.")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=5.0,
        help="Seconds between job status polls when --wait is set (default: 5).",
    )
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP request timeout in seconds.")
    args = parser.parse_args(argv)
    if args.start_date > args.end_date:
        parser.error("--start-date must be on or before --end-date")
    return args


def _log(message: str) -> None:
    print(f"[historical-sync] {message}")


def _headers(api_key: Optional[str]) -> Dict[str, str]:
    return {"X-API-Key": api_key} if api_key else {}


async def trigger(client: httpx.AsyncClient, start_date: date, end_date: date, api_key: Optional[str]) -> str:
    response = await client.post(
        "/api/v1/admin/sync/historical",
        json={"startDate": start_date.isoformat(), "endDate": end_date.isoformat()},
        headers=_headers(api_key),
    )
    response.raise_for_status()
    return str(response.json()["jobId"])


async def wait_for_job(
    client: httpx.AsyncClient,
    job_id: str,
    api_key: Optional[str],
    poll_interval: float,
) -> Dict[str, Any] | None:
    while True:
        response = await client.get(f"/api/v1/admin/queue/job/{job_id}", headers=_headers(api_key))
        if response.status_code == 404:
            # Completed jobs are removed from the queue unless retention is enabled.
            return None
        response.raise_for_status()
        job = response.json()["job"]
        if job["state"] in TERMINAL_STATES:
            return job
        _log(f"job {job_id} is {job['state']} (attempt {job['attempts']}/{job['maxAttempts']})")
        await asyncio.sleep(poll_interval)


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        job_id = await trigger(client, args.start_date, args.end_date, args.api_key)
        _log(f"enqueued job {job_id} for {args.start_date} .. {args.end_date}")
        if not args.wait:
            return 0

        job = await wait_for_job(client, job_id, args.api_key, args.poll_interval)
        if job is None:
            _log(f"job {job_id} finished and was removed from the queue")
            return 0
        if job["state"] == "failed":
            _log(f"job {job_id} failed: {job.get('lastError')}")
            return 1
        _log(f"job {job_id} completed: {job.get('result')}")
        return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
