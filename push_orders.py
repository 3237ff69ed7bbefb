#!/usr/bin/env python3
"""
push_orders.py — Upload locally exported orders and settings to a sync server

Usage:
  1. Check the server is up and its database reachable:
     python3 push_orders.py check https://your-app.railway.app

  2. Push an export file ({"orders": [...], "settings": {...}}):
     python3 push_orders.py push https://your-app.railway.app data/export.json

     Orders go up in batches of 100; change with --batch-size N.
"""

import json
import logging
import sys
import urllib.error
import urllib.request

logger = logging.getLogger("pos_sync.push")

DEFAULT_BATCH_SIZE = 100


class PushError(Exception):
    """The server refused or failed an upload."""


def _request(url, payload=None, timeout=30):
    """GET (no payload) or POST JSON to `url` and return the decoded reply."""
    data = None
    headers = {"Accept": "application/json"}
    method = "GET"
    if payload is not None:
        data = json.dumps(payload, default=str).encode("utf-8")
        headers["Content-Type"] = "application/json"
        method = "POST"

    req = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        resp = urllib.request.urlopen(req, timeout=timeout)
        return json.loads(resp.read())
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        raise PushError(f"{method} {url} failed: {e.code} {body}") from None
    except urllib.error.URLError as e:
        raise PushError(f"{method} {url} failed: {e.reason}") from None


def load_export(path):
    """Read an export file; both keys are optional."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise PushError(f"{path}: expected a JSON object with 'orders' and/or 'settings'")
    orders = data.get("orders") or []
    if not isinstance(orders, list):
        raise PushError(f"{path}: 'orders' must be a list")
    return orders, data.get("settings")


def check_health(server_url):
    result = _request(f"{server_url.rstrip('/')}/api/health", timeout=10)
    if not result.get("success"):
        raise PushError(result.get("message") or "Server reported unhealthy")
    return result


def push_settings(server_url, settings):
    result = _request(f"{server_url.rstrip('/')}/api/settings/sync", {"settings": settings})
    if not result.get("success"):
        raise PushError(result.get("message") or "Settings sync failed")
    return result


def push_orders(server_url, orders, batch_size=DEFAULT_BATCH_SIZE):
    """Send orders in batches; returns the total count the server acknowledged."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    url = f"{server_url.rstrip('/')}/api/orders/sync"
    synced = 0
    for start in range(0, len(orders), batch_size):
        batch = orders[start:start + batch_size]
        result = _request(url, {"orders": batch}, timeout=60)
        if not result.get("success"):
            raise PushError(result.get("message") or f"Batch at {start} failed")
        synced += result.get("count", 0)
        print(f"  Batch {start // batch_size + 1}: {result.get('count', 0)} orders")
    return synced


def _parse_batch_size(args):
    if "--batch-size" not in args:
        return DEFAULT_BATCH_SIZE
    i = args.index("--batch-size")
    try:
        return int(args[i + 1])
    except (IndexError, ValueError):
        print("ERROR: --batch-size needs a number")
        sys.exit(1)


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")

    if not args:
        print(__doc__)
        return 0

    command = args[0].lower()

    if command == "check":
        if len(args) < 2:
            print("Usage: python3 push_orders.py check https://your-app.railway.app")
            return 1
        try:
            health = check_health(args[1])
        except PushError as e:
            print(f"Server check failed: {e}")
            return 1
        print(f"Server status: {health.get('message')}")
        return 0

    if command == "push":
        if len(args) < 3:
            print("Usage: python3 push_orders.py push https://your-app.railway.app export.json")
            return 1
        server_url, export_file = args[1], args[2]
        batch_size = _parse_batch_size(args)

        try:
            orders, settings = load_export(export_file)
            print(f"Connecting to server: {server_url}")
            check_health(server_url)

            if settings:
                push_settings(server_url, settings)
                print("Shop settings synced")

            print(f"Uploading {len(orders)} orders...")
            synced = push_orders(server_url, orders, batch_size)
        except (OSError, ValueError, PushError) as e:
            logger.error("Upload stopped: %s", e)
            return 1

        print("\n--- Push Summary ---")
        print(f"  settings: {'yes' if settings else 'no'}")
        print(f"  orders: {synced}")
        return 0

    print(f"Unknown command: {command}")
    print(__doc__)
    return 1


if __name__ == "__main__":
    sys.exit(main())
