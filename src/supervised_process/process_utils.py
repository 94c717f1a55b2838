"""psutil helpers for the process tree below a supervised child."""

from __future__ import annotations

import contextlib
import warnings

import psutil

# Seconds descendants get to exit after SIGTERM before they are killed.
DESCENDANT_GRACE_PERIOD = 3.0


def _describe(process: psutil.Process, indent: str) -> str:
    with process.oneshot():
        cmdline = " ".join(process.cmdline()) or process.name()
        return f"{indent}{process.pid} [{process.status()}] {cmdline}"


def get_process_tree_info(pid: int) -> str:
    """Describe ``pid`` and its descendants, one process per line, for diagnostics."""
    try:
        root = psutil.Process(pid)
        lines = [_describe(root, "")]
        for child in root.children(recursive=True):
            with contextlib.suppress(psutil.Error):
                lines.append(_describe(child, "  "))
        return "\n".join(lines)
    except psutil.Error:
        return f"Could not get process info for PID {pid}"


def kill_process_tree(pid: int, grace_period: float = DESCENDANT_GRACE_PERIOD) -> None:
    """Kill a process and all its descendants.

    Descendants get SIGTERM and ``grace_period`` seconds before SIGKILL. The
    root is only signaled, never waited for: it is our own child and reaping
    it here would discard the exit status the controller still has to collect.
    """
    try:
        root = psutil.Process(pid)
        descendants = root.children(recursive=True)

        for child in descendants:
            with contextlib.suppress(psutil.NoSuchProcess):
                child.terminate()

        _, alive = psutil.wait_procs(descendants, timeout=grace_period)
        for child in alive:
            with contextlib.suppress(psutil.NoSuchProcess):
                child.kill()

        root.kill()
    except psutil.NoSuchProcess:
        return
    except (OSError, psutil.Error) as e:
        warnings.warn(f"Error killing process tree: {e}", UserWarning, stacklevel=2)
