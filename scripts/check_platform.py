#!/usr/bin/env python3
"""Configuration and deployment smoke check.

Usage:
    python scripts/check_platform.py
    python scripts/check_platform.py --backend-url https://dashboard.example.com

Loads settings the same way the service does (so missing SUPABASE_URL /
SUPABASE_ANON_KEY fail here with the same diagnostic), checks the platform's
auth health endpoint, and optionally the deployed service's /health/ready.

Exit code 0 if all checks pass, 1 if any fail.
"""

import argparse
import os
import sys
from typing import Tuple

# Ensure project root is on sys.path so we can import src.salesboard
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx  # noqa: E402

from src.salesboard.config import load_settings  # noqa: E402
from src.salesboard.core.errors import ConfigurationError  # noqa: E402

TIMEOUT = 15.0


def check_platform(url: str, key: str) -> Tuple[bool, str]:
    """Verify the platform auth service answers with the configured key."""
    try:
        response = httpx.get(
            url.rstrip("/") + "/auth/v1/health",
            headers={"apikey": key},
            timeout=TIMEOUT,
        )
        if response.status_code == 200:
            return True, "HTTP 200"
        return False, f"HTTP {response.status_code}"
    except httpx.TimeoutException:
        return False, "Request timed out"
    except httpx.ConnectError as exc:
        return False, f"Connection failed: {exc}"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"


def check_backend(url: str) -> Tuple[bool, str]:
    """Verify the deployed service's /health/ready reports ready."""
    try:
        response = httpx.get(url.rstrip("/") + "/health/ready", timeout=TIMEOUT, follow_redirects=True)
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"
    if response.status_code != 200:
        return False, f"HTTP {response.status_code}"
    try:
        status = response.json().get("status", "unknown")
    except ValueError:
        return False, "Response is not valid JSON"
    return status == "ready", f"status={status}"


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--backend-url", help="Deployed dashboard service base URL")
    args = parser.parse_args()

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        print(f"[FAIL] configuration: {exc.message}")
        return 1
    print("[ OK ] configuration")

    results = [("platform", *check_platform(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY))]
    if args.backend_url:
        results.append(("backend", *check_backend(args.backend_url)))

    ok = True
    for name, passed, detail in results:
        print(f"[{' OK ' if passed else 'FAIL'}] {name}: {detail}")
        ok = ok and passed
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
