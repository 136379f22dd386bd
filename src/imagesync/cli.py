"""One-shot command line sync."""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import ConfigManager, SyncMode
from .core import ReconciliationService, RunResult
from .performance import format_bytes
from .utils.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagesync-sync",
        description="Mirror a NodeImage account into a WebDAV folder once and exit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                        # Incremental sync (API key, no deletes)
  %(prog)s --mode full            # Full sync (cookie, deletes orphans)
  %(prog)s --config sync.yaml     # Read settings from a YAML or JSON file
        """
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in SyncMode],
        default=SyncMode.INCREMENTAL.value,
        help="Sync mode (default: incremental)"
    )
    parser.add_argument(
        "--config",
        help="Configuration file path, overrides IMAGESYNC_CONFIG_FILE"
    )
    parser.add_argument(
        "--log-level",
        help="Log level, overrides LOG_LEVEL"
    )
    return parser


def print_result(result: RunResult):
    icon = "✅" if result.success else "❌"
    print(f"{icon} {result.message}")
    if result.error:
        print(f"   Error: {result.error}")
    print(f"   Source: {result.source_total_count} files ({format_bytes(result.source_total_bytes)})")
    print(f"   WebDAV: {result.dest_total_count} files ({format_bytes(result.dest_total_bytes)})")
    print(f"   Uploaded: {format_bytes(result.upload_bytes)} in {result.duration:.2f}s")


async def run_sync(mode: SyncMode) -> RunResult:
    service = ReconciliationService(config_manager=ConfigManager())
    return await service.run(mode)


def main(argv: Optional[List[str]] = None) -> int:
    """Run a single reconciliation; exit code 0 on success, 1 otherwise."""
    args = build_parser().parse_args(argv)

    load_dotenv()
    if args.config:
        os.environ["IMAGESYNC_CONFIG_FILE"] = args.config
    setup_logging(log_level=args.log_level)

    result = asyncio.run(run_sync(SyncMode(args.mode)))
    print_result(result)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
