#!/usr/bin/env python3
"""
Coastal Dashboard - Fetch CLI

Prints normalized wave / tide tables and the daily summary.

Usage:
    python fetch_cli.py waves --start 2024-01-01 --end 2024-01-02
    python fetch_cli.py tides --start 2024-01-01
    python fetch_cli.py summary
    python fetch_cli.py --via-proxy http://localhost:3000 waves
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S"
)
logger = logging.getLogger("fetch_cli")

WAVE_HEADERS = ["Time", "Hs (m)", "Tp (s)", "Wave dir", "Water (°C)", "Air (°C)", "Wind (m/s)", "Wind dir"]
TIDE_HEADERS = ["Time", "Height (m)", "Event"]


def parse_date(s: str) -> date:
    """Parse date string (YYYY-MM-DD)."""
    return date.fromisoformat(s)


def render_table(headers, rows) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    lines = [
        "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)),
        "  ".join("-" * w for w in widths),
    ]
    for row in rows:
        lines.append("  ".join(cell.rjust(widths[i]) if i else cell.ljust(widths[i]) for i, cell in enumerate(row)))
    return "\n".join(lines)


def build_client(args):
    from config import load_backend_config
    from collector.backend_client import BackendClient

    config = load_backend_config()
    if args.via_proxy:
        return BackendClient.from_config(config, base_url=args.via_proxy, use_proxy=True), config
    return BackendClient.from_config(config), config


def _range(args, config):
    start = args.start or datetime.now(config.tzinfo).date()
    end = args.end or start
    return start, end


async def cmd_waves(args):
    """Print the wave observation table."""
    from core.display import observation_row

    client, config = build_client(args)
    start, end = _range(args, config)
    logger.info(f"Fetching waves {start} -> {end} from {client.base_url}")
    observations = await client.fetch_waves(start, end)
    rows = [observation_row(o, config.tzinfo) for o in observations]
    print(render_table(WAVE_HEADERS, rows))


async def cmd_tides(args):
    """Print the tide table and the next extremes."""
    from core.display import ddmm_hhmm, fmt_num, tide_row, upcoming_extremes

    client, config = build_client(args)
    start, end = _range(args, config)
    logger.info(f"Fetching tides {start} -> {end} from {client.base_url}")
    events = await client.fetch_tides(start, end)
    print(render_table(TIDE_HEADERS, [tide_row(e, config.tzinfo) for e in events]))

    upcoming = upcoming_extremes(events, datetime.now(config.tzinfo))
    for event in upcoming:
        print(f"Next {event.to_dict()['type']}: {ddmm_hhmm(event.time, config.tzinfo)} · {fmt_num(event.height)} m")


async def cmd_summary(args):
    """Print the daily summary grid."""
    from core.display import summary_fields

    client, config = build_client(args)
    summary = await client.fetch_summary()
    print(f"Summary - {config.site_name}")
    for field in summary_fields(summary):
        print(f"  {field['label']:<16} {field['display']}")


def main():
    load_dotenv()
    parser = argparse.ArgumentParser(
        description="Coastal Dashboard Fetch CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--via-proxy",
        metavar="ORIGIN",
        help="Dashboard origin to go through /api/proxy (default: call the backend directly)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for name, func, help_text in (
        ("waves", cmd_waves, "Wave observations table"),
        ("tides", cmd_tides, "Tide heights and events"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--start", type=parse_date, help="Start date (YYYY-MM-DD, default: today)")
        sub.add_argument("--end", type=parse_date, help="End date (YYYY-MM-DD, default: start)")
        sub.set_defaults(func=func)

    summary_parser = subparsers.add_parser("summary", help="Daily summary")
    summary_parser.set_defaults(func=cmd_summary)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    from collector.resilient_fetcher import UpstreamExhausted

    try:
        asyncio.run(args.func(args))
    except UpstreamExhausted as e:
        logger.error(f"Backend unavailable: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
