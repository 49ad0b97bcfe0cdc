"""Command-line interface for dupfind."""

import argparse
import asyncio
import os
import sys
from typing import Optional, Sequence

from . import __version__
from .scanner import async_main


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="dupfind - Find files with the same name and size under a directory tree",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "path",
        help="Root directory to scan for duplicates",
    )

    parser.add_argument(
        "-a",
        "--auto",
        action="store_true",
        help="Don't ask for confirmation before deleting a duplicate",
    )

    parser.add_argument(
        "-r",
        "--remove",
        action="store_true",
        help="Delete the duplicates found instead of only reporting them",
    )

    parser.add_argument(
        "--max-workers",
        type=int,
        default=int(os.getenv("DUPFIND_MAX_WORKERS", "10")),
        help="Maximum directories walked concurrently, root included (-1 = unbounded)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("DUPFIND_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    parser.add_argument(
        "--progress-interval",
        type=float,
        default=float(os.getenv("DUPFIND_PROGRESS_INTERVAL", "30")),
        help="Seconds between progress log lines",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"dupfind {__version__}",
    )

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        asyncio.run(
            async_main(
                path=args.path,
                require_confirmation=not args.auto,
                delete_duplicates=args.remove,
                max_workers=args.max_workers,
                log_level=args.log_level,
                progress_interval=args.progress_interval,
            )
        )

        sys.exit(0)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
