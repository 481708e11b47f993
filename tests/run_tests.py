#!/usr/bin/env python3
"""Test runner for Splurge Envelope.

Suites run in phases: unit tests first, then the integration scenarios
against the local object store. Coverage accumulates across phases into one
report.
"""

import argparse
import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
TEST_DIR = PROJECT_ROOT / "tests"

SUITES = {
    "unit": [TEST_DIR / "unit"],
    "integration": [TEST_DIR / "integration"],
    # Everything touching key rotation, across both phases
    "rotation": [TEST_DIR / "unit", TEST_DIR / "integration"],
}

SUITE_FILTERS = {
    "rotation": ["-k", "rotat"],
}

PHASES = ["unit", "integration"]


def build_command(suite: str, extra: list[str], *, coverage: bool, append: bool) -> list[str]:
    """Build the pytest command line for one suite."""
    cmd = [sys.executable, "-m", "pytest", "-v"]
    if coverage:
        cmd += ["--cov=splurge_envelope", "--cov-report=term-missing"]
        if append:
            cmd.append("--cov-append")
    cmd += [str(path) for path in SUITES[suite]]
    cmd += SUITE_FILTERS.get(suite, [])
    return cmd + extra


def run_suite(suite: str, extra: list[str], *, coverage: bool = True, append: bool = False) -> int:
    cmd = build_command(suite, extra, coverage=coverage, append=append)
    print(f"\n{'=' * 20} {suite.upper()} {'=' * 20}")
    print(" ".join(cmd))
    try:
        return subprocess.run(cmd, check=False, cwd=PROJECT_ROOT).returncode
    except FileNotFoundError:
        print("Error: pytest not found. Install the test extra: pip install -e .[test]")
        return 1


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run the Splurge Envelope test suites",
        epilog="Arguments after the suite name are passed to pytest, e.g. 'unit -- -k envelope'.",
    )
    parser.add_argument(
        "suite",
        nargs="?",
        default="all",
        choices=["all", *SUITES],
        help="Suite to run (default: all phases in order)",
    )
    parser.add_argument("--no-cov", action="store_true", help="Disable coverage collection")
    parser.add_argument("--fail-fast", action="store_true", help="Stop after the first failing phase")
    args, extra = parser.parse_known_args()
    if extra[:1] == ["--"]:
        extra = extra[1:]

    coverage = not args.no_cov
    if args.suite != "all":
        return run_suite(args.suite, extra, coverage=coverage)

    failed = []
    for index, phase in enumerate(PHASES):
        if run_suite(phase, extra, coverage=coverage, append=index > 0) != 0:
            failed.append(phase)
            if args.fail_fast:
                break

    if failed:
        print(f"\nFailed phases: {', '.join(failed)}")
        return 1
    print("\nAll phases passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
