"""subprocess.run() replacement backed by Process.

Output is collected through the Process callback so the child's pipes are
drained while it runs, and standard output and error stay separate.
"""

import subprocess
from collections.abc import Mapping
from pathlib import Path

from supervised_process.pipes import ProcessInput
from supervised_process.process import Process


def execute_subprocess_run(
    command: str | list[str],
    cwd: str | Path | None = None,
    check: bool = False,
    timeout: float | None = None,
    env: Mapping[str, str | None] | None = None,
    input: ProcessInput = None,  # noqa: A002
) -> subprocess.CompletedProcess[bytes]:
    """
    Execute a command and return its collected output, emulating subprocess.run().

    Args:
        command: Command to execute as string or list of arguments.
        cwd: Working directory for command execution.
        check: If True, raise CalledProcessError for non-zero exit codes.
        timeout: Maximum execution time in seconds. None waits indefinitely.
        env: Environment overrides merged over the inherited environment.
        input: Data fed to the command's standard input.

    Returns:
        CompletedProcess with the exit code and the raw stdout and stderr bytes.

    Raises:
        ProcessTimedOutError: If the command outlives ``timeout``; it is killed first.
        CalledProcessError: If check=True and the command exits with a non-zero code.
    """
    stdout = bytearray()
    stderr = bytearray()

    def _collect(stream: str, data: bytes) -> None:
        if stream == "out":
            stdout.extend(data)
        else:
            stderr.extend(data)

    proc = Process(command, cwd=cwd, env=env, input=input, timeout=timeout)
    try:
        return_code = proc.run(_collect)
    except KeyboardInterrupt:
        # Do not leave the child behind when the caller is interrupted
        proc.close()
        raise

    completed = subprocess.CompletedProcess(
        args=command,
        returncode=return_code,
        stdout=bytes(stdout),
        stderr=bytes(stderr),
    )

    if check and return_code != 0:
        raise subprocess.CalledProcessError(
            returncode=return_code,
            cmd=command,
            output=completed.stdout,
            stderr=completed.stderr,
        )

    return completed


def subprocess_run(
    command: str | list[str],
    cwd: str | Path | None = None,
    check: bool = False,
    timeout: float | None = None,
    env: Mapping[str, str | None] | None = None,
    input: ProcessInput = None,  # noqa: A002
) -> subprocess.CompletedProcess[bytes]:
    """Public alias of :func:`execute_subprocess_run`."""
    return execute_subprocess_run(command, cwd=cwd, check=check, timeout=timeout, env=env, input=input)
