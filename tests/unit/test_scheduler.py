import sys
import threading
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "control"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from autotdp_core.scheduler import PeriodicJob, WatchdogScheduler


class PeriodicJobTests(unittest.TestCase):
    def test_busy_domain_drops_tick(self):
        calls = []
        lock = threading.Lock()
        job = PeriodicJob("cpu_limit", lambda: calls.append(1), 1000, lock=lock)
        with lock:
            self.assertFalse(job.run_once())
        self.assertEqual(calls, [])
        self.assertEqual(job.skipped, 1)
        self.assertTrue(job.run_once())
        self.assertEqual(calls, [1])

    def test_callback_error_is_contained(self):
        def boom():
            raise RuntimeError("driver went away")

        job = PeriodicJob("gpu_clock", boom, 1000)
        with self.assertLogs("autotdp.scheduler", level="ERROR") as logs:
            self.assertTrue(job.run_once())
        self.assertEqual(job.errors, 1)
        self.assertEqual(job.ticks, 1)
        self.assertIn("gpu_clock tick failed", logs.output[0])
        # Lock released despite the error.
        self.assertTrue(job.lock.acquire(blocking=False))
        job.lock.release()

    def test_pending_stop_lifecycle(self):
        job = PeriodicJob("cpu_limit", lambda: None, 1000)
        job.request_stop()
        self.assertFalse(job.pending_stop)

        job.start()
        job.request_stop()
        self.assertTrue(job.running)
        self.assertTrue(job.pending_stop)

        job.start()
        self.assertFalse(job.pending_stop)

        job.request_stop()
        job.stop()
        self.assertFalse(job.running)
        self.assertFalse(job.pending_stop)

    def test_interval_floor_and_change(self):
        job = PeriodicJob("cpu_limit", lambda: None, 1000)
        with self.assertLogs("autotdp.scheduler", level="INFO"):
            job.interval_ms = 3000
        self.assertEqual(job.interval_ms, 3000)
        job.interval_ms = 0
        self.assertEqual(job.interval_ms, 1)


class WatchdogSchedulerTests(unittest.TestCase):
    def test_dispatch_due_respects_intervals(self):
        fast = PeriodicJob("autotdp", lambda: None, 100)
        slow = PeriodicJob("power_scheme", lambda: None, 1000)
        idle = PeriodicJob("gpu_clock", lambda: None, 100)
        scheduler = WatchdogScheduler([fast, slow, idle])
        fast.start()
        slow.start()

        submitted = []
        self.assertEqual(scheduler.dispatch_due(10.0, submitted.append), ["autotdp", "power_scheme"])
        self.assertEqual(scheduler.dispatch_due(10.05, submitted.append), [])
        self.assertEqual(scheduler.dispatch_due(10.1, submitted.append), ["autotdp"])
        self.assertEqual(scheduler.dispatch_due(11.0, submitted.append), ["autotdp", "power_scheme"])
        self.assertEqual(len(submitted), 5)
        self.assertIs(scheduler.job("gpu_clock"), idle)

    def test_dispatch_requires_started_executor(self):
        job = PeriodicJob("autotdp", lambda: None, 100)
        job.start()
        scheduler = WatchdogScheduler([job])
        with self.assertRaises(RuntimeError):
            scheduler.dispatch_due(0.0)

    def test_threaded_run_fires_jobs(self):
        fired = threading.Event()
        job = PeriodicJob("telemetry_sensor", fired.set, 50)
        scheduler = WatchdogScheduler([job])
        job.start()
        scheduler.start()
        try:
            self.assertTrue(fired.wait(2.0))
            self.assertTrue(scheduler.running)
        finally:
            scheduler.stop()
        self.assertFalse(scheduler.running)
        self.assertGreaterEqual(job.ticks, 1)


if __name__ == "__main__":
    unittest.main()
