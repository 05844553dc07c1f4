"""Command-line entrypoint for running commands through the pipeline by hand."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
from typing import Sequence

from dotenv import load_dotenv

from .config import load_config
from .logging_utils import configure_logging
from .pipeline import build_pipeline
from .prompt_builder import build_prompt


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="LARK voice pipeline manual runner",
        epilog=(
            "Examples:\n"
            "  python -m lark_voice.cli --text \"read miranda rights in spanish\"\n"
            "  python -m lark_voice.cli --text \"look up statute 14:30 and then assess threat\" --show-debug\n"
            "  python -m lark_voice.cli --text \"what is the speed limit in a school zone\" --show-prompt\n"
            "  python -m lark_voice.cli --text \"check threat\" --emergency --stats\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--text",
        type=str,
        action="append",
        help="Command text; repeat to run several commands in order",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run with the network marked offline (local patterns and cache only)",
    )
    parser.add_argument(
        "--emergency",
        action="store_true",
        help="Force emergency-only degradation before running",
    )
    parser.add_argument(
        "--show-debug",
        action="store_true",
        help="Print result metadata even when debug config is off",
    )
    parser.add_argument(
        "--show-prompt",
        action="store_true",
        help="Print the interpreter prompt for each command",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print telemetry stats after running",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    cfg = load_config()
    pipeline = build_pipeline(cfg, offline=args.offline)
    if args.emergency:
        pipeline.force_emergency_mode(True)

    for text in args.text:
        if args.show_prompt:
            prompt = build_prompt(text)
            print("--- PROMPT ---")
            print(prompt.system)
            print()
            print(prompt.user)
            print()
        results = await pipeline.submit_text(text)
        if not results:
            print(f"(no command produced for {text!r})")
        for result in results:
            print(result.response)
            print(
                f"success={result.success} action={result.action.value} module={result.module} "
                f"level={pipeline.health.get_degradation_level().name}"
            )
            if cfg.debug or args.show_debug:
                print(f"metadata={result.metadata}")

    drain = pipeline.queue.schedule_drain()
    if drain is not None:
        await drain
    await pipeline.telemetry.flush()

    if args.stats:
        stats = pipeline.stats()
        print("\n--- STATS ---")
        for field in dataclasses.fields(stats):
            print(f"{field.name}={getattr(stats, field.name)}")
        failures = {
            name: record.consecutive_failures
            for name, record in pipeline.health.service_health().items()
        }
        print(f"service_failures={failures}")

    if pipeline.cache is not None:
        pipeline.cache.store.close()


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    args = _parse_args(argv)
    if not args.text:
        raise SystemExit("Provide at least one --text command")
    configure_logging(debug=args.show_debug)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
