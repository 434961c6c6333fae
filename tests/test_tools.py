import os
import sys
import datetime
import math
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from models import LoggedSet
from tools import (
    Formatter,
    MathTools,
    RecordTools,
    WeightConverter,
    REST_TIMER_PRESETS,
    SET_TYPES,
    round_half_up,
    to_number,
)


class MathToolsTestCase(unittest.TestCase):
    def test_constants(self) -> None:
        self.assertEqual(REST_TIMER_PRESETS, (60, 90, 120, 150))
        self.assertEqual(set(SET_TYPES), {"normal", "warmup", "dropset", "restpause"})
        self.assertEqual(MathTools.MAX_REPS, 30)

    def test_to_number(self) -> None:
        self.assertEqual(to_number("100"), 100.0)
        self.assertEqual(to_number(None), 0.0)
        self.assertEqual(to_number(True), 0.0)
        self.assertEqual(to_number("abc"), 0.0)
        self.assertEqual(to_number(float("inf")), 0.0)
        self.assertEqual(to_number(float("nan")), 0.0)

    def test_round_half_up(self) -> None:
        self.assertEqual(round_half_up(2.5), 3.0)
        self.assertEqual(round_half_up(0.5), 1.0)
        self.assertEqual(round_half_up(-2.5), -2.0)
        self.assertAlmostEqual(round_half_up(1.25, 1), 1.3)

    def test_epley_1rm(self) -> None:
        self.assertAlmostEqual(MathTools.epley_1rm(100, 5), 116.7)
        self.assertAlmostEqual(MathTools.epley_1rm(100, 10), 133.3)
        self.assertEqual(MathTools.epley_1rm(100, 1), 100)
        self.assertAlmostEqual(MathTools.epley_1rm(100, 40), 233.3)
        self.assertEqual(MathTools.epley_1rm(100, -1), 0.0)

    def test_brzycki_1rm(self) -> None:
        self.assertAlmostEqual(MathTools.brzycki_1rm(100, 5), 112.5)
        self.assertAlmostEqual(MathTools.brzycki_1rm(100, 10), 133.3)
        self.assertEqual(MathTools.brzycki_1rm(80, 1), 80)

    def test_brzycki_high_reps_stays_finite(self) -> None:
        self.assertEqual(MathTools.brzycki_1rm(100, 36), 3600.0)
        self.assertEqual(MathTools.brzycki_1rm(100, 37), 200.0)
        self.assertEqual(MathTools.brzycki_1rm(100, 50), 200.0)

    def test_estimate_1rm(self) -> None:
        self.assertAlmostEqual(MathTools.estimate_1rm(100, 5), 114.6)
        self.assertAlmostEqual(MathTools.estimate_1rm(100, 10), 133.3)
        self.assertAlmostEqual(MathTools.estimate_1rm("100", "5"), 114.6)

    def test_estimate_single_rep_returns_weight(self) -> None:
        for w in (0.5, 20, 102.5, 315):
            self.assertEqual(MathTools.estimate_1rm(w, 1), w)

    def test_estimate_invalid_input(self) -> None:
        self.assertEqual(MathTools.estimate_1rm(100, 0), 0)
        self.assertEqual(MathTools.estimate_1rm(100, -3), 0)
        self.assertEqual(MathTools.estimate_1rm(100, 31), 0)
        self.assertEqual(MathTools.estimate_1rm(100, 5.5), 0)
        self.assertEqual(MathTools.estimate_1rm(0, 5), 0)
        self.assertEqual(MathTools.estimate_1rm(-20, 5), 0)
        self.assertEqual(MathTools.estimate_1rm(None, 5), 0)
        self.assertEqual(MathTools.estimate_1rm("heavy", 5), 0)
        self.assertEqual(MathTools.estimate_1rm(float("nan"), 5), 0)
        self.assertEqual(MathTools.estimate_1rm(100, float("inf")), 0)

    def test_estimates_overflowing_weight(self) -> None:
        self.assertEqual(MathTools.epley_1rm(1e308, 30), 0.0)
        self.assertEqual(MathTools.brzycki_1rm(1e308, 30), 0.0)
        self.assertEqual(MathTools.brzycki_1rm(1e308, 40), 0.0)
        self.assertEqual(MathTools.estimate_1rm(1e308, 30), 0.0)
        self.assertEqual(MathTools.estimate_1rm(1e308, 1), 1e308)
        self.assertTrue(math.isfinite(MathTools.estimate_1rm(1e300, 10)))

    def test_estimate_is_deterministic(self) -> None:
        first = [MathTools.estimate_1rm(w, r) for w in (60, 82.5, 140) for r in range(1, 31)]
        second = [MathTools.estimate_1rm(w, r) for w in (60, 82.5, 140) for r in range(1, 31)]
        self.assertEqual(first, second)

    def test_rep_percentages(self) -> None:
        table = MathTools.rep_percentages(100)
        rows = list(table)
        self.assertEqual(len(rows), 10)
        self.assertEqual(len(table), 10)
        self.assertIn({"reps": 1, "percent": 100, "weight": 100}, rows)
        self.assertIn({"reps": 5, "percent": 87, "weight": 87}, rows)
        self.assertEqual([r["reps"] for r in rows], [1, 2, 3, 4, 5, 6, 8, 10, 12, 15])
        self.assertEqual(rows[-1], {"reps": 15, "percent": 65, "weight": 65})

    def test_rep_percentages_restartable(self) -> None:
        table = MathTools.rep_percentages(142.5)
        self.assertEqual(list(table), list(table))
        self.assertEqual(list(table)[1]["weight"], 135)

    def test_rep_percentages_huge_one_rm(self) -> None:
        rows = list(MathTools.rep_percentages(1e307))
        self.assertEqual(len(rows), 10)
        self.assertAlmostEqual(rows[0]["weight"] / 1e307, 1.0)
        for row in rows:
            self.assertIsInstance(row["weight"], int)
            self.assertGreater(row["weight"], 0)

    def test_rep_percentages_invalid(self) -> None:
        for bad in (None, "x", float("nan"), -100):
            self.assertTrue(all(r["weight"] == 0 for r in MathTools.rep_percentages(bad)))

    def test_volume(self) -> None:
        sets = [
            {"weight_kg": 100, "reps": 10},
            {"weight_kg": 100, "reps": 8},
            {"weight_kg": 90, "reps": 6},
        ]
        self.assertEqual(MathTools.volume(sets), 2340)
        self.assertEqual(MathTools.volume([]), 0.0)
        self.assertEqual(MathTools.volume(None), 0.0)

    def test_volume_mixed_and_malformed(self) -> None:
        sets = [
            {"reps": "10", "weight_kg": "100"},
            None,
            {"reps": "x"},
            (5, 20),
            (1, 2, 3),
            LoggedSet(reps=3, weight_kg=10),
            {"reps": -4, "weight_kg": 50},
            object(),
        ]
        self.assertEqual(MathTools.volume(sets), 1130)

    def test_volume_saturates(self) -> None:
        result = MathTools.volume([(1e308, 10), (1e308, 10)])
        self.assertEqual(result, sys.float_info.max)

    def test_goal_progress(self) -> None:
        self.assertEqual(MathTools.goal_progress(50, 100), 50)
        self.assertEqual(MathTools.goal_progress(150, 100), 100)
        self.assertEqual(MathTools.goal_progress(1, 3), 33)
        self.assertEqual(MathTools.goal_progress(2, 3), 67)
        self.assertEqual(MathTools.goal_progress(10, 0), 0)
        self.assertEqual(MathTools.goal_progress(10, -5), 0)


class FormatterTestCase(unittest.TestCase):
    def test_format_time(self) -> None:
        self.assertEqual(Formatter.format_time(0), "00:00")
        self.assertEqual(Formatter.format_time(90), "01:30")
        self.assertEqual(Formatter.format_time(3600), "60:00")
        self.assertEqual(Formatter.format_time(7260), "121:00")
        self.assertEqual(Formatter.format_time(-5), "00:00")
        self.assertEqual(Formatter.format_time("abc"), "00:00")

    def test_format_number(self) -> None:
        self.assertEqual(Formatter.format_number(999), "999")
        self.assertEqual(Formatter.format_number(1000), "1.0K")
        self.assertEqual(Formatter.format_number(1500), "1.5K")
        self.assertEqual(Formatter.format_number(1500000), "1.5M")
        self.assertEqual(Formatter.format_number(999.5), "1000")
        self.assertEqual(Formatter.format_number(12.4), "12")
        self.assertEqual(Formatter.format_number("oops"), "0")

    def test_format_weight(self) -> None:
        self.assertEqual(Formatter.format_weight(100), "100 kg")
        self.assertEqual(Formatter.format_weight(100.5), "100.5 kg")
        self.assertEqual(Formatter.format_weight(None), "0 kg")

    def test_weight_converter(self) -> None:
        self.assertAlmostEqual(WeightConverter.kg_to_lb(100), 220.46)
        self.assertAlmostEqual(WeightConverter.lb_to_kg(220.462), 100.0)


class RecordToolsTestCase(unittest.TestCase):
    def test_to_date(self) -> None:
        self.assertEqual(
            RecordTools.to_date("2024-03-05T10:00:00Z"), datetime.date(2024, 3, 5)
        )
        self.assertEqual(
            RecordTools.to_date("2024-03-05T10:00:00+00:00"), datetime.date(2024, 3, 5)
        )
        self.assertEqual(RecordTools.to_date("2024-03-05"), datetime.date(2024, 3, 5))
        self.assertIsNone(RecordTools.to_date("garbage"))
        self.assertIsNone(RecordTools.to_date(None))

    def test_personal_record(self) -> None:
        sets = [{"weight_kg": 80}, {"weight_kg": 102.5}, {"weight_kg": "95"}]
        self.assertEqual(RecordTools.personal_record(sets), 102.5)
        self.assertEqual(RecordTools.personal_record([]), 0.0)

    def test_personal_records(self) -> None:
        sets = [
            {"exercise_id": 1, "weight_kg": 100},
            {"exercise_id": 1, "weight_kg": 110},
            {"exercise_id": 2, "weight_kg": 50},
            {"weight_kg": 500},
        ]
        self.assertEqual(RecordTools.personal_records(sets), {1: 110.0, 2: 50.0})

    def test_day_streaks(self) -> None:
        stamps = [
            "2024-01-01T08:00:00+00:00",
            "2024-01-01T18:00:00+00:00",
            "2024-01-03T08:00:00+00:00",
            "2024-01-05T08:00:00+00:00",
            "2024-01-09T08:00:00+00:00",
            "2024-01-10T08:00:00+00:00",
        ]
        self.assertEqual(RecordTools.longest_day_streak(stamps), 3)
        self.assertEqual(RecordTools.longest_day_streak(stamps, max_gap_days=1), 2)
        self.assertEqual(
            RecordTools.current_day_streak(stamps, datetime.date(2024, 1, 11)), 2
        )
        self.assertEqual(
            RecordTools.current_day_streak(stamps, datetime.date(2024, 1, 13)), 0
        )
        self.assertEqual(RecordTools.longest_day_streak([]), 0)
        self.assertEqual(RecordTools.current_day_streak([]), 0)

    def test_week_streak_across_year_boundary(self) -> None:
        stamps = ["2023-12-28", "2024-01-02", "2024-01-10", "2024-01-24"]
        self.assertEqual(RecordTools.longest_week_streak(stamps), 3)
        self.assertEqual(RecordTools.longest_week_streak(["2020-12-31", "2021-01-05"]), 2)
        self.assertEqual(RecordTools.longest_week_streak([]), 0)

    def test_iso_week(self) -> None:
        self.assertEqual(RecordTools.iso_week("2021-01-01"), (2020, 53))
        self.assertEqual(RecordTools.iso_week("2024-01-01T00:00:00Z"), (2024, 1))
        self.assertIsNone(RecordTools.iso_week("nope"))


if __name__ == "__main__":
    unittest.main()
