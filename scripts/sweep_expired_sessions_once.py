#!/usr/bin/env python3
"""One-shot removal of expired auth sessions."""

from __future__ import annotations

import argparse
import time

from dotenv import load_dotenv

from broker.core.config import AppConfig, ConfigError
from broker.sessions.store import BACKEND_ERRORS
from web_api import build_session_store


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Delete auth sessions whose expiry has passed.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many sessions would be deleted.",
    )
    parser.add_argument(
        "--now",
        type=int,
        default=None,
        help="Unix timestamp to treat as the current time.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run sweep workflow."""
    args = _parse_args(argv)
    load_dotenv()
    try:
        config = AppConfig.from_env()
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return 2

    now = args.now if args.now is not None else int(time.time())
    try:
        store = build_session_store(config.storage)
    except BACKEND_ERRORS as exc:
        print(f"Session store unavailable: {exc}")
        return 2
    try:
        if args.dry_run:
            affected = store.count_expired(now=now)
        else:
            affected = store.sweep_expired(now=now)
    except BACKEND_ERRORS as exc:
        print(f"Sweep failed: {exc}")
        return 2
    finally:
        store.close()

    print(f"Mode: {'dry-run' if args.dry_run else 'write'}")
    print(f"Expired sessions {'found' if args.dry_run else 'deleted'}: {affected}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
