#!/usr/bin/env python3
# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Command-line interface for CloudGallery.
Builds and inspects the metadata cache without going through the web API.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .cache_manager import CacheManager
from .config import load_config, validate_config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Console logging for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def setup_file_logging(log_dir: str) -> None:
    """Set up file logging in addition to console."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path / 'cloudgallery.log')
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


def print_progress(result: dict) -> None:
    print(f"{result.get('status')}: {result.get('processed', 0)}/{result.get('total', 0)}")


def run_batches(manager: CacheManager, offset: int = 0) -> dict:
    """
    Drive process_batch until the run completes.

    Calls are strictly sequential and each one starts at the processed
    count returned by the previous call. An empty run never completes on
    its own, so the loop also stops once a call makes no progress.
    """
    while True:
        result = manager.process_batch(offset)
        print_progress(result)
        if result["status"] != "caching" or result["processed"] <= offset:
            return result
        offset = result["processed"]


def cmd_init(manager: CacheManager, args) -> int:
    """Start a new cache run."""
    result = manager.init_cache(args.folder)
    print(f"Initialized: {result['total']} files to process")
    return 0


def cmd_process(manager: CacheManager, args) -> int:
    """Resume the current run from where the metadata log stops."""
    status = manager.get_status()
    if status.status == "idle":
        print("No cache run in progress. Use 'init' or 'build' first.")
        return 1
    run_batches(manager, status.processed)
    return 0


def cmd_build(manager: CacheManager, args) -> int:
    """Initialize and process a full run."""
    result = manager.init_cache(args.folder)
    print(f"Initialized: {result['total']} files to process")
    final = run_batches(manager, 0)
    if final.get("message"):
        print(final["message"])
    return 0


def cmd_status(manager: CacheManager, args) -> int:
    """Show cache status."""
    status = manager.get_status()
    print("Cache Status")
    print("=" * 40)
    print(f"State: {status.status}")
    print(f"Processed: {status.processed}/{status.total}")
    return 0


def cmd_cancel(manager: CacheManager, args) -> int:
    """Cancel the current run."""
    result = manager.cancel()
    print(result["message"])
    return 0


def cmd_serve(manager: CacheManager, args) -> int:
    """Run the web API."""
    from .web.app import run_server
    run_server(manager.config, manager)
    return 0


COMMANDS = {
    "init": cmd_init,
    "process": cmd_process,
    "build": cmd_build,
    "status": cmd_status,
    "cancel": cmd_cancel,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudgallery",
        description="CloudGallery - Nextcloud photo gallery cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cloudgallery build            Rebuild the metadata cache
  cloudgallery status           Show cache progress
  cloudgallery cancel           Stop the current run
  cloudgallery serve            Run the web API
        """
    )
    parser.add_argument("-c", "--config", help="Path to config.yaml")
    parser.add_argument("--log-dir", help="Also write logs to this directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for name in ("init", "build"):
        sub = subparsers.add_parser(name, help=COMMANDS[name].__doc__)
        sub.add_argument("folder", nargs="?", help="Remote folder (default: nextcloud.photo_dir)")

    for name in ("process", "status", "cancel", "serve"):
        subparsers.add_parser(name, help=COMMANDS[name].__doc__)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)
    if args.log_dir:
        setup_file_logging(args.log_dir)

    config = load_config(args.config)
    for error in validate_config(config):
        logger.warning(f"Config warning: {error}")

    try:
        manager = CacheManager(config)
        return COMMANDS[args.command](manager, args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
