#!/usr/bin/env python3
"""Sign in against a running gateway and call a protected endpoint.

Usage:
    # Using environment variables:
    API_BASE=http://localhost:8080 APP_SERVER_BASE_URL=http://localhost:8000 \
        SMOKE_EMAIL=a@b.com SMOKE_PASSWORD=password123 python scripts/session_smoke.py

    # Or with command line args:
    python scripts/session_smoke.py --email a@b.com --password password123 --register

Environment Variables:
    API_BASE: Identity gateway base URL (legacy: GATEWAY_BASE_URL)
    APP_SERVER_BASE_URL: Application server base URL
    REFRESH_TRANSPORT: explicit (default) or cookie
    SMOKE_EMAIL / SMOKE_PASSWORD: credentials used for the sign-in
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


class _PrintingListener:
    def on_session_expired(self, event) -> None:
        print(f"Session ended ({event.reason}); sign in again at {event.redirect_to}")


async def run_smoke(email: str, password: str, register: bool = False) -> dict:
    """Probe, sign in, fetch /me, sign out.

    Returns:
        dict with health, phase after sign-in, and the /me payload
    """
    # Import here to avoid loading config before env vars are set
    from gatewaysession.service.runtime import get_runtime

    runtime = get_runtime()
    runtime.notifier.subscribe(_PrintingListener())
    try:
        health = await runtime.gateway.probe()
        print(f"Gateway health: {health.value}")

        if register:
            await runtime.auth.register(email, password)
        else:
            await runtime.auth.login(email, password)
        phase = runtime.auth.phase
        print(f"Signed in as {email} (phase: {phase.value})")

        me = await runtime.app_server.me()
        print(f"/me: {me}")

        await runtime.auth.logout()
        return {"health": health.value, "phase": phase.value, "me": me}
    finally:
        await runtime.aclose()


def main():
    parser = argparse.ArgumentParser(
        description="Smoke-test the gateway session flow",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("SMOKE_EMAIL"),
        help="Account email (or set SMOKE_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("SMOKE_PASSWORD"),
        help="Account password (or set SMOKE_PASSWORD env var)",
    )
    parser.add_argument(
        "--register",
        action="store_true",
        help="Register the account instead of logging in",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or SMOKE_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or SMOKE_PASSWORD environment variable required")
        sys.exit(1)

    os.environ.setdefault("LOG_DEV_MODE", "true")

    try:
        asyncio.run(run_smoke(args.email, args.password, args.register))
        print("\nSmoke test passed.")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
