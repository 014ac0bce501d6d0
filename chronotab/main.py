"""Chronotab service entry point."""

import argparse
import asyncio
import logging
import signal

from chronotab.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chronotab",
        description="Open scheduled sets of pages and recover runs missed while offline.",
    )
    parser.add_argument(
        "--reason",
        choices=("startup", "install", "update"),
        default="startup",
        help="Why the process is starting (install/update also initialise settings)",
    )
    parser.add_argument(
        "--no-server",
        action="store_true",
        help="Do not start the HTTP messaging endpoint",
    )
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Run one missed-occurrence pass and exit",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    from chronotab.app import ChronotabApp

    app = ChronotabApp(serve=not args.no_server and not args.check_only)
    if args.check_only:
        result = await app.reconciler.check_missed()
        logger.info("%d missed occurrence(s) pending", len(result.pending))
        return

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    await app.start(args.reason)
    try:
        await stop.wait()
    finally:
        await app.stop()


def main(argv: list[str] | None = None) -> None:
    """Start the scheduler service."""
    args = _parse_args(argv)
    logger.info("Starting Chronotab (reason=%s)...", args.reason)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
