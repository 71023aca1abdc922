"""Scripted stand-in for an external scanning tool, used by integration tests."""

from __future__ import annotations

import argparse
import signal
import sys
import time


def main(argv: list[str] | None = None) -> int:
    """Write the scripted output, optionally linger, and exit with the given code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--stdout-line", action="append", default=[])
    parser.add_argument("--stderr-line", action="append", default=[])
    parser.add_argument("--line-delay", type=float, default=0.0)
    parser.add_argument("--echo-stdin", action="store_true")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--ignore-sigterm", action="store_true")
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    for line in args.stderr_line:
        sys.stderr.write(line + "\n")
        sys.stderr.flush()
    for line in args.stdout_line:
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
        if args.line_delay > 0:
            time.sleep(args.line_delay)
    if args.echo_stdin:
        sys.stdout.write(sys.stdin.read())
        sys.stdout.flush()

    if args.sleep > 0:
        time.sleep(args.sleep)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
