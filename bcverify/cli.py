#!/usr/bin/env python3
"""
CLI entrypoint for the bcverify bytecode verifier.

Usage:
    bcverify [--path DIR] [-v] [--strategy rpo|fifo|lifo] [--jobs N] UNIT...

Each UNIT is a unit name ("demo.Point", "demo/Point", "demo/Point.json").
Its descriptor is read from <DIR>/demo/Point.json.

Returns:
    0: every pass of every unit verified OK
    1: at least one pass rejected (or was cancelled)
    2: usage error
"""

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from . import __version__
from .frontend.loader import DirectoryLoader, canonical_unit_name
from .logging_config import configure_logging
from .structural.engine import WorklistStrategy
from .verifier import VerifierConfig, VerifierRegistry


def _print_result(label: str, result) -> None:
    print(f"{label}:\n{result}\n")


def verify_unit(registry: VerifierRegistry, name: str, jobs: int = 1) -> bool:
    """Verify one unit, print every verdict and its warnings, then release it."""
    name = canonical_unit_name(name)
    print(f"Now verifying: {name}\n")
    verifier = registry.get_verifier(name)
    try:
        if jobs > 1:
            with ThreadPoolExecutor(max_workers=jobs) as executor:
                report = verifier.verify_all(executor)
        else:
            report = verifier.verify_all()

        _print_result("Pass 1", report.pass1)
        _print_result("Pass 2", report.pass2)
        unit = verifier.unit
        for index, (pass3a, pass3b) in enumerate(report.methods):
            method = unit.methods[index]
            _print_result(f"Pass 3a, method number {index} ['{method}']", pass3a)
            _print_result(f"Pass 3b, method number {index} ['{method}']", pass3b)

        print("Warnings:")
        for message in report.warnings or ["<none>"]:
            print(message)
        print("\n")
        return report.ok
    finally:
        registry.release(name)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="bcverify",
        description="bcverify: static structural verifier for bytecode units",
    )
    parser.add_argument("units", nargs="+", metavar="UNIT", help="Unit name(s) to verify")
    parser.add_argument(
        "--path",
        type=Path,
        default=Path("."),
        help="Directory holding the unit descriptors (default: current directory)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose (debug) logging")
    parser.add_argument(
        "--strategy",
        choices=[s.name.lower() for s in WorklistStrategy],
        default="rpo",
        help="Work-set order of the data-flow engine (default: rpo)",
    )
    parser.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Verify methods of a unit on N worker threads (default: 1)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)
    if args.jobs < 1:
        parser.error("--jobs must be at least 1")

    configure_logging(args.verbose)

    config = VerifierConfig(strategy=WorklistStrategy[args.strategy.upper()])
    registry = VerifierRegistry(DirectoryLoader(args.path), config=config)

    all_ok = True
    for name in args.units:
        if not verify_unit(registry, name, args.jobs):
            all_ok = False
    return 0 if all_ok else 1


if __name__ == "__main__":
    sys.exit(main())
