#!/usr/bin/env python3
"""hookcheck Command Line Interface.

Check that Unicorn calls the code hook for MIPS branch delay slots.

Usage:
    python main.py
    python main.py --trace --strict
"""

import argparse
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from hookcheck import DelaySlotHarness, HookRange, ProgramImage
from hookcheck.program import BASE_ADDRESS, REFERENCE_LOOP_COUNT


def main():
    parser = argparse.ArgumentParser(
        description="hookcheck: delay-slot code hook verification for Unicorn",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run the reference loop (counter 2, loop top retired 3 times)
    python main.py

    # Show every hooked address and also check iterations and registers
    python main.py --trace --strict

    # Only hook the delay-slot instruction
    python main.py --hook-range 0x10000c:0x10000c

Exit status:
    0 on pass, the engine error code on an engine failure,
    99 when execution completed but the delay-slot hook never fired.
        """
    )

    parser.add_argument(
        "--count", "-n",
        type=int,
        default=REFERENCE_LOOP_COUNT,
        help=f"Initial loop counter. Default: {REFERENCE_LOOP_COUNT}"
    )
    parser.add_argument(
        "--base",
        type=lambda s: int(s, 0),
        default=BASE_ADDRESS,
        help=f"Load address of the image. Default: {BASE_ADDRESS:#x}"
    )
    parser.add_argument(
        "--map-size",
        type=lambda s: int(s, 0),
        default=DelaySlotHarness.DEFAULT_MAP_SIZE,
        help=f"Bytes mapped at the load address. Default: {DelaySlotHarness.DEFAULT_MAP_SIZE:#x}"
    )
    parser.add_argument(
        "--hook-range",
        type=str,
        default="all",
        help="Code hook filter: 'all' or LO:HI (inclusive). Default: all"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DelaySlotHarness.DEFAULT_TIMEOUT,
        help="Engine timeout in microseconds, 0 for unbounded. Default: 0"
    )
    parser.add_argument(
        "--max-instructions",
        type=int,
        default=DelaySlotHarness.DEFAULT_MAX_INSTRUCTIONS,
        help="Engine instruction limit, 0 for unbounded. Default: 0"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Also check the iteration count and final counter register"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print every address reported by the code hook"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Print PASSED/FAILED only"
    )

    args = parser.parse_args()

    try:
        image = ProgramImage.build(args.count, args.base)
        hook_range = HookRange.parse(args.hook_range)
    except ValueError as e:
        parser.error(str(e))

    harness = DelaySlotHarness(
        image=image,
        hook_range=hook_range,
        map_size=args.map_size,
        timeout=args.timeout,
        max_instructions=args.max_instructions,
        strict=args.strict,
    )

    if not args.quiet:
        print("---- Executing Code ----")

    verdict = harness.run()

    if args.quiet:
        print("PASSED" if verdict.passed else f"FAILED: {verdict.error}")
    else:
        if args.trace:
            harness.print_trace(verdict)
        print("---- Execution Complete ----\n")
        harness.print_report(verdict)

    return verdict.exit_status


if __name__ == "__main__":
    sys.exit(main())
