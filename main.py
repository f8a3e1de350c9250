"""
main.py — Wayfarer Entry Point

Usage:
    python main.py                                  # CLI REPL, default settings
    python main.py --message "Weather in Lisbon?"   # one turn, print the reply
    python main.py --thread my-trip                 # resume a thread (sqlite store)
    python main.py --log-level DEBUG                # Verbose logging
    python main.py --config path/to/config.yaml
"""

from __future__ import annotations

# Load environment variables before anything reads settings
from dotenv import load_dotenv
from pathlib import Path

ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="wayfarer",
        description="Wayfarer — travel assistant with cited, self-checked answers",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $WAYFARER_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--thread",
        default=None,
        help="Conversation thread id (default: a new random id)",
    )
    parser.add_argument(
        "--message",
        default=None,
        help="Answer one message, print the reply and exit",
    )
    parser.add_argument(
        "--why",
        action="store_true",
        default=False,
        help="With --message: also print the receipt of the answer",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from config.settings import ConfigError, load_settings
    from observability.logger import get_logger, setup_logging
    from pydantic import ValidationError

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_json_format,
        console_output=settings.log_console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("wayfarer.main")
    return settings, log


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "wayfarer.starting",
        version=settings.agent.version,
        llm_provider=settings.default_llm_provider,
        llm_model=settings.default_llm_model,
        store=settings.session.kind,
    )

    from agent.service import WayfarerService
    from exceptions import ResilienceError, StoreError
    from pydantic import ValidationError

    service = WayfarerService.from_settings(settings)
    try:
        await service.startup()
    except (StoreError, ResilienceError, OSError) as e:
        log.error("wayfarer.startup_failed", error=str(e), error_type=type(e).__name__)
        print(f"\n❌  Failed to start: {type(e).__name__}: {e}\n", file=sys.stderr)
        return 1

    try:
        if args.message is not None:
            try:
                out = await service.handle_turn({"message": args.message, "thread_id": args.thread})
            except ValidationError as e:
                print(f"\n❌  Invalid message: {e.errors()[0]['msg']}\n", file=sys.stderr)
                return 2
            print(out.reply)
            if args.why:
                print()
                print(await service.why(out.thread_id))
        else:
            from interfaces.cli import run_cli
            await run_cli(settings, service, thread_id=args.thread)
    finally:
        await service.shutdown()

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
