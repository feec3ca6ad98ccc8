#!/usr/bin/env python3
"""One-off: manage the Strava push subscription that delivers events to /api/v1/strava/webhook.
Usage:
  STRAVA_CLIENT_ID=... STRAVA_CLIENT_SECRET=... python scripts/strava_push_subscription.py list
  ... STRAVA_VERIFY_TOKEN=... CALLBACK_URL=https://host/api/v1/strava/webhook python scripts/strava_push_subscription.py create
  ... python scripts/strava_push_subscription.py delete <subscription_id>
Strava verifies the callback with a GET handshake while `create` is in flight, so the API must be reachable."""
import asyncio
import json
import os
import sys

import httpx

BASE = "https://www.strava.com/api/v3/push_subscriptions"
CLIENT_ID = os.environ.get("STRAVA_CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("STRAVA_CLIENT_SECRET", "")
VERIFY_TOKEN = os.environ.get("STRAVA_VERIFY_TOKEN", "")
CALLBACK_URL = os.environ.get("CALLBACK_URL", "")


def _show(r: httpx.Response) -> None:
    print("Status:", r.status_code)
    if r.content:
        try:
            print(json.dumps(r.json(), indent=2))
        except ValueError:
            print(r.text[:500])


async def main(argv: list[str]):
    if not CLIENT_ID or not CLIENT_SECRET:
        print("Set STRAVA_CLIENT_ID and STRAVA_CLIENT_SECRET in environment")
        return 1
    command = argv[0] if argv else "list"
    creds = {"client_id": CLIENT_ID, "client_secret": CLIENT_SECRET}

    async with httpx.AsyncClient(timeout=30.0) as client:
        if command == "list":
            print("=== GET {} ===".format(BASE))
            _show(await client.get(BASE, params=creds))
        elif command == "create":
            if not CALLBACK_URL or not VERIFY_TOKEN:
                print("Set CALLBACK_URL and STRAVA_VERIFY_TOKEN in environment")
                return 1
            print("=== POST {} callback_url={} ===".format(BASE, CALLBACK_URL))
            _show(await client.post(BASE, data={**creds, "callback_url": CALLBACK_URL, "verify_token": VERIFY_TOKEN}))
        elif command == "delete" and len(argv) > 1:
            print("=== DELETE {}/{} ===".format(BASE, argv[1]))
            _show(await client.delete(f"{BASE}/{argv[1]}", params=creds))
        else:
            print(__doc__)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
