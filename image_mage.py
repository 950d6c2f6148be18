"""
Interactive CLI that applies pixel-map transforms to a single image.

The image path is validated once at startup, then transforms are read from
stdin one line at a time until `quit`. Each transform writes `out.ppm` in the
working directory and records telemetry, which the `history` command lists.
"""

from __future__ import annotations

import argparse
import logging
import math
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, TextIO

from PIL import Image

from ppm_utils import (
    CORRECTED_WEIGHTS,
    DEFAULT_WEIGHTS,
    OUTPUT_PATH,
    TRANSFORMS,
    Weights,
    apply_transform,
)
from telemetry import POLICIES, TELEMETRY_PAYLOAD_BYTES, TelemetryCache, make_cache

log_format = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
logger = logging.getLogger("image_mage")

COMMANDS = TRANSFORMS + ("history",)
QUIT_COMMAND = "quit"


@dataclass
class Session:
    """State shared by every command for the lifetime of the process."""

    image: Path
    cache: TelemetryCache
    weights: Weights = DEFAULT_WEIGHTS
    output_path: Path = OUTPUT_PATH
    out: TextIO = field(default_factory=lambda: sys.stdout)


def _finite_float(raw_value: str) -> float:
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{raw_value!r} is not a number.") from exc
    if not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"{raw_value!r} must be a finite number.")
    return value


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Apply plain-text pixel-map transforms to an image interactively."
    )
    parser.add_argument(
        "image",
        type=Path,
        help="Path to the input image file.",
    )
    parser.add_argument(
        "--cache",
        choices=POLICIES,
        default="unbounded",
        help="Telemetry retention policy (default: unbounded).",
    )
    parser.add_argument(
        "--blue-weight",
        type=_finite_float,
        default=DEFAULT_WEIGHTS[2],
        help=(
            "Blue channel weight for greyscale "
            f"(default: {DEFAULT_WEIGHTS[2]}; {CORRECTED_WEIGHTS[2]} avoids overflow)."
        ),
    )
    parser.add_argument(
        "--payload-bytes",
        type=int,
        default=TELEMETRY_PAYLOAD_BYTES,
        help=(
            "Filler bytes attached to every telemetry record, making the unbounded "
            f"cache growth visible in memory (default: {TELEMETRY_PAYLOAD_BYTES})."
        ),
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=OUTPUT_PATH,
        help=f"Path of the pixel map written by each transform (default: {OUTPUT_PATH}).",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="WARNING",
        help="Logging level (default: WARNING).",
    )
    return parser.parse_args(argv)


def format_elapsed(seconds: float) -> str:
    # Truncated, not rounded, to whole ten-thousandths of a second.
    ticks = int(seconds * 10000)
    total_seconds, fraction = divmod(ticks, 10000)
    minutes, secs = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{fraction:04d}"


def print_history(session: Session) -> None:
    print(f"History ({session.cache.count()}):", file=session.out)
    for record in session.cache:
        print(f"* {record}", file=session.out)


def run_command(session: Session, command: str) -> None:
    """Dispatch one known command; failures are reported, never raised."""
    name = command.lower()
    start = time.perf_counter()
    try:
        if name == "history":
            print_history(session)
        else:
            apply_transform(
                session.image,
                name,
                session.cache,
                weights=session.weights,
                output_path=session.output_path,
            )
    except (OverflowError, ValueError) as exc:
        logger.error("%s failed: %s", name, exc)
        print(f"Error: {exc}", file=session.out)
    except (OSError, Image.DecompressionBombError) as exc:
        logger.error("%s failed on %s: %s", name, session.image, exc)
        print(f"Error: {exc}", file=session.out)
    elapsed = time.perf_counter() - start
    print(f"Time elapsed: {format_elapsed(elapsed)}", file=session.out)


def command_loop(session: Session, read_line: Callable[[str], str] = input) -> None:
    print(f"Valid transforms: {', '.join(COMMANDS)}", file=session.out)
    print(f"Type '{QUIT_COMMAND}' to quit.", file=session.out)

    while True:
        try:
            command = read_line("Type a transform: ")
        except EOFError:
            break

        if command == QUIT_COMMAND:
            break

        if command.lower() not in COMMANDS:
            print("Unknown transform!!", file=session.out)
            continue

        run_command(session, command)

    print("Goodbye!", file=session.out)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format=log_format)

    if not args.image.is_file():
        raise SystemExit(f"Image file '{args.image}' does not exist")
    if args.payload_bytes < 0:
        raise SystemExit("--payload-bytes must be >= 0")

    weights: Weights = (DEFAULT_WEIGHTS[0], DEFAULT_WEIGHTS[1], args.blue_weight)
    session = Session(
        image=args.image,
        cache=make_cache(args.cache, payload_bytes=args.payload_bytes),
        weights=weights,
        output_path=args.output,
    )
    logger.info("Using %s telemetry cache, greyscale weights %s", args.cache, weights)
    command_loop(session)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
