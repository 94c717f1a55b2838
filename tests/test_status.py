"""Tests for status snapshots and exit-code reconciliation."""

import os
import signal
import subprocess
import sys
import time
import unittest

from supervised_process.status import UNKNOWN_EXIT_CODE, ExitStatusReconciler, ProcessStatus, query_status


def dead(exitcode: int = UNKNOWN_EXIT_CODE, signaled: bool = False, termsig: int = 0) -> ProcessStatus:
    return ProcessStatus(pid=100, running=False, exitcode=exitcode, signaled=signaled, termsig=termsig)


class TestExitStatusReconciler(unittest.TestCase):
    """Pure reconciliation rules, fed with hand-made snapshots."""

    def test_running_status_passes_through(self):
        reconciler = ExitStatusReconciler()
        status = ProcessStatus(pid=100, running=True)
        self.assertIs(reconciler.reconcile(status), status)
        self.assertIsNone(reconciler.cached_exit_code)

    def test_first_exit_code_is_cached(self):
        reconciler = ExitStatusReconciler()
        self.assertEqual(reconciler.reconcile(dead(3)).exitcode, 3)
        self.assertEqual(reconciler.reconcile(dead()).exitcode, 3)
        self.assertEqual(reconciler.cached_exit_code, 3)

    def test_cached_code_does_not_override_real_codes(self):
        reconciler = ExitStatusReconciler()
        reconciler.reconcile(dead(3))
        self.assertEqual(reconciler.reconcile(dead(5)).exitcode, 5)

    def test_finalize_plain_exit(self):
        exit_code, status = ExitStatusReconciler().finalize(dead(2))
        self.assertEqual(exit_code, 2)
        self.assertFalse(status.signaled)

    def test_finalize_signal_death(self):
        exit_code, status = ExitStatusReconciler().finalize(dead(signaled=True, termsig=signal.SIGTERM))
        self.assertEqual(exit_code, 128 + signal.SIGTERM)
        self.assertEqual(status.termsig, signal.SIGTERM)

    def test_finalize_unknown_exit_on_reliable_platform(self):
        exit_code, status = ExitStatusReconciler(unreliable_reporting=False).finalize(dead())
        self.assertEqual(exit_code, UNKNOWN_EXIT_CODE)
        self.assertFalse(status.signaled)

    def test_finalize_unknown_exit_on_unreliable_platform(self):
        exit_code, status = ExitStatusReconciler(unreliable_reporting=True).finalize(dead())
        self.assertEqual(exit_code, UNKNOWN_EXIT_CODE)
        self.assertTrue(status.signaled)
        self.assertEqual(status.termsig, -1)

    def test_fallback_exit_code_overrides_sentinel(self):
        reconciler = ExitStatusReconciler(unreliable_reporting=True)
        reconciler.seed_fallback(4242)
        reconciler.record_fallback_exit(b"3\n")

        status = reconciler.reconcile(dead())

        self.assertEqual(status.pid, 4242)
        self.assertEqual(status.exitcode, 3)
        self.assertFalse(status.signaled)
        self.assertEqual(reconciler.finalize(status)[0], 3)

    def test_fallback_signal_exit(self):
        reconciler = ExitStatusReconciler(unreliable_reporting=True)
        reconciler.seed_fallback(4242)
        reconciler.record_fallback_exit(b"137\n")

        exit_code, status = reconciler.finalize(reconciler.reconcile(dead()))

        self.assertEqual(exit_code, 137)
        self.assertTrue(status.signaled)
        self.assertEqual(status.termsig, 9)

    def test_fallback_without_exit_line_assumes_signal(self):
        reconciler = ExitStatusReconciler(unreliable_reporting=True)
        reconciler.seed_fallback(4242)

        exit_code, status = reconciler.finalize(reconciler.reconcile(dead()))

        self.assertEqual(exit_code, UNKNOWN_EXIT_CODE)
        self.assertTrue(status.signaled)
        self.assertEqual(status.termsig, -1)

    def test_fallback_does_not_override_real_status(self):
        reconciler = ExitStatusReconciler(unreliable_reporting=True)
        reconciler.seed_fallback(4242)
        reconciler.record_fallback_exit(b"3\n")

        self.assertEqual(reconciler.reconcile(dead(0)).exitcode, 0)

    def test_fallback_exit_recorded_once(self):
        reconciler = ExitStatusReconciler(unreliable_reporting=True)
        reconciler.seed_fallback(4242)
        reconciler.record_fallback_exit(b"3\n")
        reconciler.record_fallback_exit(b"9\n")
        self.assertEqual(reconciler.fallback.exitcode, 3)

    def test_malformed_and_unseeded_lines_are_ignored(self):
        reconciler = ExitStatusReconciler(unreliable_reporting=True)
        reconciler.record_fallback_exit(b"3\n")
        self.assertIsNone(reconciler.fallback)

        reconciler.seed_fallback(4242)
        reconciler.record_fallback_exit(b"not a number\n")
        self.assertTrue(reconciler.fallback.signaled)
        self.assertEqual(reconciler.fallback.termsig, -1)


@unittest.skipIf(sys.platform == "win32", "waitpid semantics")
class TestQueryStatus(unittest.TestCase):
    """The OS status primitive against real children."""

    def wait_until_dead(self, proc: subprocess.Popen) -> ProcessStatus:
        deadline = time.monotonic() + 10
        status = query_status(proc)
        while status.running and time.monotonic() < deadline:
            time.sleep(0.01)
            status = query_status(proc)
        return status

    def test_exit_code(self):
        proc = subprocess.Popen([sys.executable, "-c", "raise SystemExit(4)"])  # noqa: S603
        status = self.wait_until_dead(proc)

        self.assertFalse(status.running)
        self.assertEqual(status.exitcode, 4)
        self.assertEqual(proc.returncode, 4)
        self.assertEqual(query_status(proc), status)

    def test_running_child(self):
        proc = subprocess.Popen(["sleep", "10"])  # noqa: S603, S607
        try:
            status = query_status(proc)
            self.assertTrue(status.running)
            self.assertEqual(status.pid, proc.pid)
        finally:
            proc.kill()
            proc.wait()

    def test_signal_death(self):
        proc = subprocess.Popen(["sleep", "10"])  # noqa: S603, S607
        proc.send_signal(signal.SIGKILL)
        status = self.wait_until_dead(proc)

        self.assertTrue(status.signaled)
        self.assertEqual(status.termsig, signal.SIGKILL)
        self.assertEqual(status.exitcode, UNKNOWN_EXIT_CODE)

    def test_child_reaped_elsewhere_reports_sentinel(self):
        proc = subprocess.Popen(["true"])  # noqa: S603, S607
        os.waitpid(proc.pid, 0)

        status = query_status(proc)

        self.assertFalse(status.running)
        self.assertEqual(status.exitcode, UNKNOWN_EXIT_CODE)
        self.assertFalse(status.signaled)


if __name__ == "__main__":
    unittest.main()
