from __future__ import annotations

import argparse
import asyncio
import logging

from calendar_holds.core.config import Settings
from calendar_holds.core.database import build_engine, build_session_factory
from calendar_holds.services.hold_sweeper import HoldExpirySweeper


async def run_sweep(env_file: str | None) -> int:
    settings = Settings.from_env(env_file)
    engine = build_engine(settings)
    try:
        sweeper = HoldExpirySweeper(build_session_factory(engine))
        return await sweeper.run_once()
    finally:
        await engine.dispose()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire lapsed provisional holds once and exit.")
    parser.add_argument("--env-file", default=None, help="Optional .env file to load")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    expired = asyncio.run(run_sweep(args.env_file))
    print(f"Expired {expired} hold(s)")


if __name__ == "__main__":
    main()
