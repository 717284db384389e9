"""
sliding-quota CLI.

Commands:
    serve     - Run the HTTP service under uvicorn
    inspect   - Print a client's current quota usage from the store
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from sliding_quota.config import get_settings
from sliding_quota.services.store import StoreError, create_store
from sliding_quota.services.window_limiter import create_limiter


def validate_port(value: str) -> int:
    """Validate port number is in valid range."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")

    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Port must be between 1 and 65535, got: {port}")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sliding-quota",
        description="Rolling-window request quota service",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument(
        "--host",
        default=os.environ.get("SLQ_HOST", "127.0.0.1"),
        help="Bind address (default: 127.0.0.1 or $SLQ_HOST)",
    )
    serve.add_argument(
        "--port",
        "-p",
        type=validate_port,
        default=int(os.environ.get("SLQ_PORT", "8000")),
        help="Bind port (default: 8000 or $SLQ_PORT)",
    )

    inspect = sub.add_parser("inspect", help="Show quota usage for a client key")
    inspect.add_argument("client_key", help="Client key, usually the source IP address")
    return parser


async def _inspect(client_key: str) -> dict:
    settings = get_settings()
    store = create_store(settings)
    try:
        status = await create_limiter(settings, store).status(client_key)
    finally:
        await store.close()
    return {
        "client_key": client_key,
        "limit": status.limit,
        "used": status.used,
        "remaining": status.remaining,
        "window_hours": status.window_seconds / 3600,
        "reset_at": status.reset_at,
    }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("sliding_quota.main:app", host=args.host, port=args.port)
        return 0

    try:
        report = asyncio.run(_inspect(args.client_key))
    except (StoreError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
