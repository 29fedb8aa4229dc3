import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "control"))

from autotdp_control.filters import LowPassFilter, OneEuroFilter


class FilterTests(unittest.TestCase):
    def test_first_sample_passes_through(self):
        f = OneEuroFilter(min_cutoff=0.15, beta=0.1)
        self.assertIsNone(f.value)
        self.assertEqual(f.filter(42.0, 0.1), 42.0)
        self.assertEqual(f.value, 42.0)

    def test_step_is_smoothed_then_followed(self):
        f = OneEuroFilter(min_cutoff=0.15, beta=0.1)
        f.filter(30.0, 0.1)
        first = f.filter(60.0, 0.1)
        self.assertGreater(first, 30.0)
        self.assertLess(first, 60.0)
        value = first
        for _ in range(200):
            value = f.filter(60.0, 0.1)
        self.assertAlmostEqual(value, 60.0, places=3)

    def test_higher_beta_reacts_faster(self):
        slow = OneEuroFilter(min_cutoff=0.15, beta=0.0)
        fast = OneEuroFilter(min_cutoff=0.15, beta=1.0)
        for f in (slow, fast):
            f.filter(30.0, 0.1)
        self.assertGreater(fast.filter(60.0, 0.1), slow.filter(60.0, 0.1))

    def test_tuning_takes_effect_on_live_filter(self):
        untouched = OneEuroFilter(min_cutoff=0.15, beta=0.0)
        tuned = OneEuroFilter(min_cutoff=0.15, beta=0.0)
        tuned.min_cutoff = 5.0
        for f in (untouched, tuned):
            f.filter(30.0, 0.1)
        self.assertGreater(tuned.filter(60.0, 0.1), untouched.filter(60.0, 0.1))

    def test_reset_restores_first_sample_behaviour(self):
        f = OneEuroFilter()
        f.filter(10.0, 0.1)
        f.filter(20.0, 0.1)
        f.reset()
        self.assertIsNone(f.value)
        self.assertEqual(f.filter(5.0, 0.1), 5.0)

    def test_zero_dt_rejected(self):
        with self.assertRaises(ValueError):
            OneEuroFilter().filter(1.0, 0.0)

    def test_low_pass_blend(self):
        lp = LowPassFilter()
        self.assertEqual(lp.apply(10.0, 0.5), 10.0)
        self.assertEqual(lp.apply(20.0, 0.5), 15.0)


if __name__ == "__main__":
    unittest.main()
