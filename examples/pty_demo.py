#!/usr/bin/env python3
"""PTY Demo - Shows how a command behaves on pipes versus a pseudo-terminal."""

import sys

from supervised_process import Process, TerminalMode, pty_supported, unreliable_exit_status_reporting


def show(stream: str, data: bytes) -> None:
    print(f"  [{stream}] {data!r}")


def demo_pipe_vs_pty():
    """Run the same command with pipes and on a PTY."""
    print("PTY Support Demo")
    print("=" * 50)
    print(f"Platform: {sys.platform}")
    print(f"PTY Available: {pty_supported()}")
    print(f"Exit status fallback active: {unreliable_exit_status_reporting()}")
    print()

    command = "if [ -t 1 ]; then echo 'Running in TTY mode'; else echo 'Running in pipe mode'; fi; echo oops >&2"

    print("Running with pipes (standard mode):")
    exit_code = Process(command).run(show)
    print(f"Exit code: {exit_code}")
    print()

    print("Running with PTY (falls back to pipes when unavailable):")
    exit_code = Process(command, terminal_mode=TerminalMode.PTY).run(show)
    print(f"Exit code: {exit_code}")
    print()

    print("Signal deaths are reported as 128 + signal:")
    exit_code = Process("kill -TERM $$").run(show)
    print(f"Exit code: {exit_code}")


if __name__ == "__main__":
    demo_pipe_vs_pty()
