import json
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "control"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from autotdp_core.config import AppConfig, curves_path, load_config, save_config


class ConfigTests(unittest.TestCase):
    def test_missing_file_gives_defaults(self):
        cfg = load_config(Path("/tmp/nonexistent-autotdp-config.json"))
        self.assertEqual(cfg.config_version, 2)
        self.assertEqual(cfg.performance.tdp_sustained, 15.0)
        self.assertEqual(cfg.performance.power_mode, 1)
        self.assertEqual(cfg.watchdog.autotdp_ms, 100)
        self.assertEqual(cfg.controller.max_tdp, 25.0)

    def test_unversioned_document_is_upgraded_in_place(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text(
                json.dumps({"performance": {"tdp_sustained": 12, "autotdp_fps_target": "45"}, "tdp": {"sustained": 20}}),
                encoding="utf-8",
            )
            cfg = load_config(path)

        self.assertEqual(cfg.config_version, 2)
        self.assertEqual(cfg.performance.tdp_sustained, 12.0)
        self.assertEqual(cfg.performance.autotdp_fps_target, 45.0)
        self.assertEqual(cfg.watchdog.autotdp_ms, 100)

    def test_bias_fps_clamp_is_ordered(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text(
                json.dumps({"config_version": 2, "controller": {"bias_fps_min": 0, "bias_fps_max": "bad"}}),
                encoding="utf-8",
            )
            cfg = load_config(path)

        self.assertEqual(cfg.controller.bias_fps_min, 1.0)
        self.assertEqual(cfg.controller.bias_fps_max, 90.0)

    def test_values_are_coerced_and_bounded(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text(
                json.dumps(
                    {
                        "config_version": 2,
                        "performance": {"autotdp_enabled": "yes", "power_mode": 9, "tdp_boost": "bad"},
                        "controller": {"min_tdp": 8, "max_tdp": 6, "error_clamp_low": 3},
                        "watchdog": {"cpu_ms": 1},
                        "telemetry": {"monitor_processes": "HWiNFO64.exe"},
                    }
                ),
                encoding="utf-8",
            )
            cfg = load_config(path)

        self.assertTrue(cfg.performance.autotdp_enabled)
        self.assertEqual(cfg.performance.power_mode, 2)
        self.assertEqual(cfg.performance.tdp_boost, 15.0)
        self.assertEqual(cfg.controller.max_tdp, 9.0)
        self.assertEqual(cfg.controller.error_clamp_low, 0.0)
        self.assertEqual(cfg.watchdog.cpu_ms, 10)
        self.assertEqual(cfg.telemetry.monitor_processes, ["HWiNFO64.exe"])

    def test_unreadable_file_falls_back_to_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("autotdp.config", level="WARNING"):
                cfg = load_config(path)
        self.assertEqual(cfg, AppConfig())

    def test_save_then_load(self):
        cfg = AppConfig()
        cfg.performance.autotdp_fps_target = 40.0
        cfg.controller.min_tdp = 6.0
        cfg.curves_dir = "/opt/curves"
        with tempfile.TemporaryDirectory() as tmp:
            path = save_config(cfg, Path(tmp) / "nested" / "config.json")
            loaded = load_config(path)
        self.assertEqual(loaded, cfg)
        self.assertEqual(curves_path(loaded), Path("/opt/curves"))


if __name__ == "__main__":
    unittest.main()
