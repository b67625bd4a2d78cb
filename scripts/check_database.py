#!/usr/bin/env python3
"""Probe the master and replica pools and print their health as JSON.

Exit code is 1 when neither master nor any replica answers.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from obe_backend.core.db import DatabaseCluster
from obe_backend.core.logging import configure_logging
from obe_backend.core.settings import get_settings


async def check(*, connect: bool) -> dict:
    settings = get_settings()
    cluster = DatabaseCluster.from_settings(settings)
    try:
        if connect:
            await cluster.connect()
        report = await cluster.health_check()
        report["pools"] = cluster.pool_stats()
        return report
    finally:
        await cluster.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--strict",
        action="store_true",
        help="open every pool first and fail on the first unreachable endpoint",
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON indentation")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        report = asyncio.run(check(connect=args.strict))
    except Exception as exc:
        print(json.dumps({"overall": "unhealthy", "error": str(exc)}, indent=args.indent))
        return 1

    print(json.dumps(report, indent=args.indent))
    return 1 if report["overall"] == "unhealthy" else 0


if __name__ == "__main__":
    sys.exit(main())
