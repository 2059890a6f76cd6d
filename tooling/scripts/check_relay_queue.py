#!/usr/bin/env python3
"""Quick health check for the loyalty relay queue.

Usage:
    python tooling/scripts/check_relay_queue.py \
        --base-url https://relay.example.com \
        --api-key "$ADMIN_API_KEY" \
        --max-failed 0 --max-waiting 500

The script validates:
  * Readiness reports the relay workers and the job store as reachable.
  * Failed jobs retained for operators stay within the threshold.
  * The backlog of waiting + delayed jobs stays within the threshold.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Loyalty relay queue checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:3000",
        help="Base URL of the loyalty relay service.",
    )
    parser.add_argument("--api-key", default=None, help="Admin API key, when the service requires one.")
    parser.add_argument(
        "--max-failed",
        type=int,
        default=0,
        help="Maximum allowed failed jobs before failing (default: 0).",
    )
    parser.add_argument(
        "--max-waiting",
        type=int,
        default=1000,
        help="Maximum allowed waiting + delayed jobs before failing (default: 1000).",
    )
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP request timeout in seconds.")
    return parser.parse_args()


async def _get_json(
    client: httpx.AsyncClient,
    path: str,
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-relay-queue] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-relay-queue] OK {message}")


async def validate_readiness(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/health/readyz")
    if payload.get("status") == "error":
        components = payload.get("components", {})
        broken = [name for name, component in components.items() if component.get("status") == "error"]
        _fail(f"Readiness reports errors in: {', '.join(broken) or 'unknown'}")
    _log_ok(f"Readiness status {payload.get('status')}")


async def validate_queue(
    client: httpx.AsyncClient,
    api_key: Optional[str],
    max_failed: int,
    max_waiting: int,
) -> None:
    headers = {"X-API-Key": api_key} if api_key else None
    payload = await _get_json(client, "/api/v1/admin/queue/stats", headers=headers)
    stats = payload.get("stats", {})
    failed = int(stats.get("failed", 0))
    backlog = int(stats.get("waiting", 0)) + int(stats.get("delayed", 0))

    if failed > max_failed:
        _fail(f"Failed relay jobs {failed} exceed threshold {max_failed}")
    if backlog > max_waiting:
        _fail(f"Relay backlog {backlog} exceeds threshold {max_waiting}")
    _log_ok(f"Queue within thresholds (failed={failed}, backlog={backlog}, active={stats.get('active', 0)})")


async def main() -> None:
    args = parse_args()
    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        await validate_readiness(client)
        await validate_queue(client, args.api_key, args.max_failed, args.max_waiting)


if __name__ == "__main__":
    asyncio.run(main())
