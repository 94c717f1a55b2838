"""Command line entry point.

``python -m supervised_process.cli -- CMD [ARGS...]`` runs a command under
supervision, relays its output and exits with its exit code. Without a command
it prints the platform capabilities.
"""

from __future__ import annotations

import argparse
import logging
import sys

from supervised_process.capabilities import pty_supported, tty_supported, unreliable_exit_status_reporting
from supervised_process.exceptions import ProcessError, ProcessTimedOutError
from supervised_process.process import Process, TerminalMode

# Conventional exit codes of timeout(1) and of a command that could not be started.
EXIT_TIMEOUT = 124
EXIT_SPAWN_FAILED = 127


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="supervised-process", description=__doc__.splitlines()[0])
    parser.add_argument("--cwd", default=None, help="working directory for the command")
    parser.add_argument("--timeout", type=float, default=None, help="seconds before the command is killed")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--pty", action="store_true", help="run the command on a pseudo-terminal")
    mode.add_argument("--tty", action="store_true", help="attach the command to the controlling terminal")
    parser.add_argument("-v", "--verbose", action="store_true", help="log lifecycle events to stderr")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run (after --)")
    args = parser.parse_args(argv)
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    return args


def _relay(stream: str, data: bytes) -> None:
    target = sys.stdout if stream == "out" else sys.stderr
    target.buffer.write(data)
    target.flush()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, stream=sys.stderr)

    if not args.command:
        print(f"pty_supported: {pty_supported()}")
        print(f"tty_supported: {tty_supported()}")
        print(f"unreliable_exit_status_reporting: {unreliable_exit_status_reporting()}")
        return 0

    terminal_mode = TerminalMode.PTY if args.pty else TerminalMode.TTY if args.tty else TerminalMode.NONE
    try:
        process = Process(args.command, cwd=args.cwd, timeout=args.timeout, terminal_mode=terminal_mode)
        return process.run(_relay)
    except ProcessTimedOutError as e:
        print(e, file=sys.stderr)
        return EXIT_TIMEOUT
    except ProcessError as e:
        print(e, file=sys.stderr)
        return EXIT_SPAWN_FAILED


if __name__ == "__main__":
    sys.exit(main())
