"""Run a catalog sync from the command line."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os

from dotenv import load_dotenv

from catalogsync.jobs.sync import run_all, run_sync


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("merchant_id", nargs="?", help="merchant to sync; omit with --all")
    parser.add_argument("platform", nargs="?", choices=["facebook", "pinterest", "tiktok"])
    parser.add_argument("--all", action="store_true", help="sync every connected merchant and platform")
    args = parser.parse_args()
    if not args.all and not (args.merchant_id and args.platform):
        parser.error("merchant_id and platform are required unless --all is given")
    return args


async def main() -> int:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args()
    if args.all:
        reports = await run_all()
        for (merchant_id, platform), report in reports.items():
            print(merchant_id, platform, json.dumps(report.as_dict()))
        return 0 if all(report.success for report in reports.values()) else 1
    report = await run_sync(args.merchant_id, args.platform)
    print(json.dumps(report.as_dict(), indent=2))
    return 0 if report.success else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
