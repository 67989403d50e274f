"""Command-line entry point: replay a call-event log into Parity traces."""

from __future__ import annotations

import argparse
import logging
import sys

from . import constants
from .builder import CallNestingError
from .precompiles import (
    ALL_FORKS_CHAIN_CONFIG,
    MAINNET_CHAIN_CONFIG,
    ChainRulesResolver,
)
from .replay import replay
from .sinks import JsonLinesSink, ShardedFileSink, TraceSink
from .tracer import ParityTracer

logger = logging.getLogger(__name__)

CHAINS = {
    "mainnet": MAINNET_CHAIN_CONFIG,
    "dev": ALL_FORKS_CHAIN_CONFIG,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parity-tracer",
        description="Rebuild Parity-style call traces from a VM call-event log",
    )
    parser.add_argument("events", help="JSON-lines call-event log ('-' for stdin)")
    parser.add_argument(
        "--output-dir",
        "-o",
        default=None,
        help="Write block-sharded trace logs here instead of stdout",
    )
    parser.add_argument(
        "--per-folder",
        type=int,
        default=constants.DEFAULT_PER_FOLDER,
        help=f"Blocks per directory (default: {constants.DEFAULT_PER_FOLDER})",
    )
    parser.add_argument(
        "--per-file",
        type=int,
        default=constants.DEFAULT_PER_FILE,
        help=f"Blocks per log file (default: {constants.DEFAULT_PER_FILE})",
    )
    parser.add_argument(
        "--chain",
        default="mainnet",
        choices=sorted(CHAINS),
        help="Fork schedule used to pick precompiles (default: mainnet)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log per-call tracer events"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    sink: TraceSink
    if args.output_dir:
        sink = ShardedFileSink(args.output_dir, args.per_folder, args.per_file)
    else:
        sink = JsonLinesSink(sys.stdout)

    tracer = ParityTracer(
        sink=sink,
        precompile_resolver=ChainRulesResolver(CHAINS[args.chain]),
        owns_sink=True,
    )
    try:
        with tracer:
            if args.events == "-":
                results = replay(sys.stdin, tracer)
            else:
                with open(args.events, encoding="utf-8") as f:
                    results = replay(f, tracer)
    except (CallNestingError, ValueError) as exc:
        # pydantic.ValidationError is a ValueError
        print(f"error: {exc}", file=sys.stderr)
        return 1

    failed = sum(stats.failed for stats in results)
    logger.info(
        "%d transaction(s), %d record(s) emitted, %d failed",
        len(results),
        sum(stats.emitted for stats in results),
        failed,
    )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
