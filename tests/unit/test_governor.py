import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "control"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from autotdp_control import ControllerState, CurveLibrary
from autotdp_core.config import AppConfig
from autotdp_core.governor import Governor, Profile
from autotdp_core.hardware import DryRunProcessor, PowerRail, ProcessorVendor, RequestOrigin, TdpRequest
from autotdp_core.power_scheme import InMemoryPowerScheme, PowerMode
from shm_fixture import DEAD, build_region, default_groups, set_signature, write_region


def tdp_writes(processor):
    return [payload for kind, payload in processor.writes if kind == "tdp"]


class GovernorTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.shm = self.tmp / "sensors.bin"
        self.governors = []

    def tearDown(self):
        for governor in self.governors:
            governor.stop()
        self._tmp.cleanup()

    def make(self, vendor=ProcessorVendor.AMD, blocked=False, **performance):
        cfg = AppConfig()
        cfg.curves_dir = str(self.tmp / "curves")
        cfg.telemetry.shared_memory_path = str(self.shm)
        for key, value in performance.items():
            setattr(cfg.performance, key, value)
        processor = DryRunProcessor(vendor=vendor)
        governor = Governor(
            cfg,
            processor,
            power_scheme=InMemoryPowerScheme(),
            curves=CurveLibrary(),
            blocklist_check=lambda: blocked,
        )
        governor.start(run_scheduler=False)
        self.governors.append(governor)
        return governor, processor

    def event_names(self, governor):
        return [row["event"] for row in governor.recent_events()]


class CpuLimitTests(GovernorTestCase):
    def test_writes_until_read_back_matches(self):
        governor, processor = self.make()
        governor.start_tdp_watchdog()

        governor.cpu_job.run_once()
        self.assertEqual(
            tdp_writes(processor), [(PowerRail.SLOW, 15.0), (PowerRail.STAPM, 15.0), (PowerRail.FAST, 15.0)]
        )
        # Read-back was zero, so the job slows down until the driver reports.
        self.assertEqual(governor.cpu_job.interval_ms, 3000)

        governor.cpu_job.run_once()
        self.assertEqual(len(tdp_writes(processor)), 3)
        self.assertEqual(governor.cpu_job.interval_ms, 1000)

    def test_busy_domain_writes_nothing(self):
        governor, processor = self.make()
        governor.start_tdp_watchdog()
        with governor.cpu_job.lock:
            self.assertFalse(governor.cpu_job.run_once())
        self.assertEqual(processor.writes, [])

    def test_pending_stop_waits_for_convergence(self):
        governor, processor = self.make()
        governor.start_tdp_watchdog()
        governor.request_tdp([10, 10, 12])
        governor.stop_tdp_watchdog()
        self.assertTrue(governor.cpu_job.pending_stop)

        governor.cpu_job.run_once()
        self.assertTrue(governor.cpu_job.running)
        self.assertEqual(processor.current_limits[PowerRail.FAST], 12.0)

        governor.cpu_job.run_once()
        self.assertFalse(governor.cpu_job.running)
        self.assertIn("cpu_limit_converged", self.event_names(governor))

    def test_better_battery_derates_amd_limits(self):
        governor, processor = self.make()
        governor.request_power_mode(0)
        self.assertEqual(governor.power_scheme.active, PowerMode.BETTER_BATTERY)
        governor.start_tdp_watchdog()
        governor.cpu_job.run_once()
        self.assertEqual({w for _, w in tdp_writes(processor)}, {13.0})

    def test_intel_skips_stapm_and_waits_for_msr_read_back(self):
        governor, processor = self.make(vendor=ProcessorVendor.INTEL)
        self.assertEqual(governor.cpu_job.interval_ms, 5000)
        governor.start_tdp_watchdog()

        governor.cpu_job.run_once()
        self.assertEqual([rail for rail, _ in tdp_writes(processor)], [PowerRail.SLOW, PowerRail.FAST])
        self.assertFalse(any(kind == "msr" for kind, _ in processor.writes))

        processor.on_limit_changed(PowerRail.MSR_SLOW, 10)
        processor.on_limit_changed(PowerRail.MSR_FAST, 12)
        governor.cpu_job.run_once()
        self.assertEqual(processor.writes[-1], ("msr", (15, 15)))
        self.assertEqual(governor.cpu_job.interval_ms, 5000)

    def test_intel_blocklist_disables_tdp_control(self):
        governor, processor = self.make(vendor=ProcessorVendor.INTEL, blocked=True)
        self.assertTrue(governor.tdp_blocked)
        self.assertFalse(processor.is_initialized)
        self.assertFalse(governor.start_tdp_watchdog())
        self.assertFalse(governor.start_autotdp(60))
        self.assertIn("tdp_blocked", self.event_names(governor))

    def test_blocklist_only_applies_to_intel(self):
        governor, processor = self.make(blocked=True)
        self.assertFalse(governor.tdp_blocked)
        self.assertTrue(processor.is_initialized)


class RequestTests(GovernorTestCase):
    def test_only_user_requests_move_the_fallback(self):
        governor, _ = self.make()
        governor.submit(TdpRequest(PowerRail.SLOW, 9.0, RequestOrigin.CONTROLLER))
        self.assertEqual(governor.requested_tdp[PowerRail.SLOW], 9.0)
        self.assertEqual(governor.fallback_tdp[PowerRail.SLOW], 15.0)

        governor.request_tdp(11.0, rail=PowerRail.FAST)
        self.assertEqual(governor.fallback_tdp[PowerRail.FAST], 11.0)

    def test_invalid_requests_rejected(self):
        governor, _ = self.make()
        with self.assertRaises(ValueError):
            governor.request_tdp(10.0, rail=PowerRail.MSR_SLOW)
        with self.assertRaises(ValueError):
            governor.request_tdp([10.0, 12.0])
        with self.assertRaises(ValueError):
            governor.request_power_mode(3)

    def test_profile_apply_and_discard(self):
        governor, _ = self.make()
        profile = Profile("racing", tdp_override=True, tdp_value=[8.0, 8.0, 10.0], gpu_override=True, gpu_clock=900)
        governor.apply_profile(profile)
        self.assertTrue(governor.cpu_job.running)
        self.assertTrue(governor.gpu_job.running)
        self.assertEqual(governor.requested_tdp[PowerRail.FAST], 10.0)
        self.assertEqual(governor.requested_gfx_clock, 900.0)
        self.assertEqual(governor.fallback_tdp[PowerRail.FAST], 15.0)
        self.assertIs(governor.active_profile, profile)

        governor.discard_profile(profile)
        self.assertEqual(governor.requested_tdp[PowerRail.FAST], 15.0)
        self.assertEqual(governor.requested_gfx_clock, 0.0)
        self.assertTrue(governor.cpu_job.pending_stop)
        self.assertTrue(governor.gpu_job.pending_stop)
        self.assertIsNone(governor.active_profile)


class GpuAndPowerTests(GovernorTestCase):
    def test_gpu_clock_waits_for_read_back(self):
        governor, processor = self.make()
        governor.request_gpu_clock(1200)
        governor.start_gpu_watchdog()

        governor.gpu_job.run_once()
        self.assertEqual(processor.writes, [])

        processor.on_gfx_clock_changed(800)
        governor.gpu_job.run_once()
        self.assertEqual(processor.writes, [("gpu", 1200.0)])

        governor.stop_gpu_watchdog()
        governor.gpu_job.run_once()
        self.assertFalse(governor.gpu_job.running)
        self.assertEqual(len(processor.writes), 1)

    def test_discarded_gpu_profile_stops_watchdog(self):
        governor, processor = self.make()
        profile = Profile("menu", gpu_override=True, gpu_clock=900)
        governor.apply_profile(profile)
        processor.on_gfx_clock_changed(800)
        governor.gpu_job.run_once()
        self.assertEqual(processor.writes, [("gpu", 900.0)])

        governor.discard_profile(profile)
        self.assertTrue(governor.gpu_job.pending_stop)
        governor.gpu_job.run_once()
        self.assertFalse(governor.gpu_job.running)
        self.assertIn("gpu_clock_converged", self.event_names(governor))
        self.assertEqual(len(processor.writes), 1)

    def test_power_scheme_reapplied_when_changed_externally(self):
        governor, _ = self.make()
        scheme = governor.power_scheme
        governor.power_job.run_once()
        self.assertEqual(scheme.set_calls, [])

        scheme.active = PowerMode.BEST_PERFORMANCE
        governor.power_job.run_once()
        self.assertEqual(scheme.set_calls, [PowerMode.BETTER_PERFORMANCE])

        scheme.active = None
        governor.power_job.run_once()
        self.assertEqual(len(scheme.set_calls), 1)


class AutoTdpFlowTests(GovernorTestCase):
    def test_setpoint_reaches_hardware_and_stop_restores_request(self):
        write_region(self.shm, build_region(default_groups(fps=60.0, power=12.0)))
        governor, processor = self.make()
        self.assertTrue(governor.start_autotdp(60, application="game.exe"))

        governor.sensor_job.run_once()
        self.assertEqual(governor.signals.read().fps, 60.0)
        self.assertTrue(governor.channel.connected)

        governor.autotdp_job.run_once()
        self.assertEqual(governor.controller.state, ControllerState.BIAS_CALIBRATION)
        self.assertEqual(governor.controller.output.read(), 12.0)
        self.assertTrue(governor.cpu_job.running)

        governor.cpu_job.run_once()
        self.assertEqual(processor.current_limits[PowerRail.SLOW], 12.0)

        governor.stop_autotdp()
        governor.autotdp_job.run_once()
        self.assertFalse(governor.autotdp_job.running)
        self.assertEqual(governor.controller.state, ControllerState.IDLE)
        self.assertTrue(governor.cpu_job.pending_stop)

        governor.cpu_job.run_once()
        self.assertEqual(processor.current_limits[PowerRail.SLOW], 15.0)
        governor.cpu_job.run_once()
        self.assertFalse(governor.cpu_job.running)

    def test_restart_before_tick_keeps_autotdp_running(self):
        write_region(self.shm, build_region(default_groups(fps=60.0, power=12.0)))
        governor, _ = self.make()
        governor.start_autotdp(60, application="game.exe")
        governor.sensor_job.run_once()
        governor.autotdp_job.run_once()
        self.assertEqual(governor.controller.state, ControllerState.BIAS_CALIBRATION)

        governor.stop_autotdp()
        self.assertTrue(governor.start_autotdp(60, application="game.exe"))
        self.assertFalse(governor.controller.stop_requested)

        governor.autotdp_job.run_once()
        self.assertTrue(governor.autotdp_job.running)
        self.assertNotEqual(governor.controller.state, ControllerState.IDLE)
        self.assertEqual(governor.controller.output.read(), 12.0)

    def test_lost_telemetry_publishes_unusable_signals(self):
        write_region(self.shm, build_region(default_groups()))
        governor, processor = self.make()
        governor.start_autotdp(60, application="game.exe")
        governor.sensor_job.run_once()
        self.assertTrue(governor.signals.read().usable)

        set_signature(self.shm, DEAD)
        governor.sensor_job.run_once()
        self.assertFalse(governor.signals.read().usable)
        self.assertIn("telemetry_lost", self.event_names(governor))

        governor.autotdp_job.run_once()
        self.assertEqual(governor.controller.state, ControllerState.IDLE)
        self.assertEqual(tdp_writes(processor), [])

    def test_missing_region_is_retried_quietly(self):
        governor, _ = self.make()
        governor.sensor_job.run_once()
        self.assertFalse(governor.channel.connected)
        self.assertIsNone(governor.signals.read())
        self.assertEqual(governor.sensor_job.errors, 0)

    def test_status_reports_jobs(self):
        governor, _ = self.make()
        status = governor.status()
        self.assertEqual(
            [job["name"] for job in status["jobs"]],
            ["power_scheme", "cpu_limit", "gpu_clock", "telemetry_sensor", "autotdp"],
        )
        self.assertEqual(status["power_mode"], "Better Performance")


if __name__ == "__main__":
    unittest.main()
