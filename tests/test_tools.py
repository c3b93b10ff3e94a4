import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms import MathTools, WeightConverter


class MathToolsTestCase(unittest.TestCase):
    def test_clamp(self) -> None:
        self.assertEqual(MathTools.clamp(5, 0, 10), 5)
        self.assertEqual(MathTools.clamp(-1, 0, 10), 0)
        self.assertEqual(MathTools.clamp(11, 0, 10), 10)
        with self.assertRaises(ValueError):
            MathTools.clamp(1, 2, 1)

    def test_volume(self) -> None:
        sets = [(10, 100.0), (5, 150.0)]
        self.assertEqual(MathTools.volume(sets), 10 * 100.0 + 5 * 150.0)
        self.assertEqual(MathTools.volume([]), 0.0)

    def test_volume_delta(self) -> None:
        self.assertEqual(MathTools.volume_delta(100, 5, 105, 5), 25)
        self.assertEqual(MathTools.volume_delta(100, 5, 100, 3), -200)

    def test_beats(self) -> None:
        self.assertTrue(MathTools.beats(100, 6, 100, 5))
        self.assertTrue(MathTools.beats(105, 1, 100, 5))
        self.assertFalse(MathTools.beats(95, 8, 100, 5))
        self.assertFalse(MathTools.beats(100, 4, 100, 5))
        self.assertFalse(MathTools.beats(100, 5, 100, 5))

    def test_percent(self) -> None:
        self.assertEqual(MathTools.percent(1, 4), 25.0)
        self.assertEqual(MathTools.percent(5, 4), 100.0)
        self.assertEqual(MathTools.percent(1, 0), 0.0)


class WeightConverterTestCase(unittest.TestCase):
    def test_conversions(self) -> None:
        self.assertAlmostEqual(WeightConverter.lb_to_kg(100), 45.3592)
        self.assertEqual(WeightConverter.to_kg(80, "kg"), 80)
        self.assertAlmostEqual(WeightConverter.to_kg(100, "lbs"), 45.3592)


if __name__ == "__main__":
    unittest.main()
