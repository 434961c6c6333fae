import datetime
import os
import sys
import unittest

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    AsyncDashboardRepository,
    BodyMeasurementRepository,
    CategoryRepository,
    ExerciseRepository,
    RoutineRepository,
    SessionRepository,
    SetLogRepository,
)
from models import LoggedSet
from stats_service import NO_ROUTINE, UNCATEGORIZED, StatisticsService


def build_history(db_path: str) -> dict:
    categories = CategoryRepository(db_path)
    exercises = ExerciseRepository(db_path)
    routines = RoutineRepository(db_path)
    sessions = SessionRepository(db_path)
    sets = SetLogRepository(db_path)

    chest = categories.add("Chest")
    legs = categories.add("Legs")
    bench = exercises.add("Bench Press", chest)
    squat = exercises.add("Squat", legs)
    curl = exercises.add("Curl")
    routine = routines.create("A")

    s1 = sessions.create(
        routine,
        created_at="2024-01-01T10:00:00+00:00",
        completed_at="2024-01-01T11:00:00+00:00",
        duration_seconds=3600,
    )
    sets.bulk_add(
        s1,
        [
            LoggedSet(exercise_id=bench, reps=10, weight_kg=100, set_number=1),
            LoggedSet(exercise_id=bench, reps=8, weight_kg=100, set_number=2),
        ],
    )
    s2 = sessions.create(
        routine,
        created_at="2024-01-03T10:00:00+00:00",
        completed_at="2024-01-03T11:00:00+00:00",
        duration_seconds=3600,
    )
    sets.bulk_add(
        s2,
        [
            LoggedSet(exercise_id=bench, reps=5, weight_kg=110, set_number=1),
            LoggedSet(exercise_id=squat, reps=5, weight_kg=140, set_number=1),
        ],
    )
    s3 = sessions.create(None, created_at="2024-01-10T10:00:00+00:00")
    sets.bulk_add(
        s3,
        [
            LoggedSet(exercise_id=squat, reps=5, weight_kg=150, set_number=1),
            LoggedSet(exercise_id=curl, reps=10, weight_kg=20, set_number=1),
        ],
    )
    return {
        "bench": bench,
        "squat": squat,
        "curl": curl,
        "routine": routine,
        "sessions": (s1, s2, s3),
    }


class StatisticsServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_stats.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.data = build_history(self.db_path)
        self.measurements = BodyMeasurementRepository(self.db_path)
        self.stats = StatisticsService(
            SessionRepository(self.db_path),
            SetLogRepository(self.db_path),
            measurement_repo=self.measurements,
        )

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_overview(self) -> None:
        overview = self.stats.overview()
        self.assertEqual(overview["total_sessions"], 3)
        self.assertEqual(overview["total_volume"], 4000)
        self.assertEqual(
            overview["weekly_volume"],
            [
                {"week": "2024-01-01", "volume": 3050},
                {"week": "2024-01-08", "volume": 950},
            ],
        )
        self.assertEqual(
            [(p["exercise"], p["max_weight"]) for p in overview["prs"]],
            [("Squat", 150), ("Bench Press", 110), ("Curl", 20)],
        )
        self.assertEqual(overview["prs"][1]["max_volume"], 1000)
        self.assertEqual(
            overview["routine_frequency"],
            [{"name": "A", "count": 2}, {"name": NO_ROUTINE, "count": 1}],
        )

    def test_session_volume(self) -> None:
        s1, s2, s3 = self.data["sessions"]
        self.assertEqual(self.stats.session_volume(s1), 1800)
        self.assertEqual(self.stats.session_volume(s2), 1250)
        self.assertEqual(self.stats.session_volume(999), 0)

    def test_exercise_progress(self) -> None:
        progress = self.stats.exercise_progress(self.data["bench"])
        self.assertEqual([p["date"] for p in progress], ["2024-01-01", "2024-01-03"])
        first = progress[0]
        self.assertEqual(first["max_weight"], 100)
        self.assertEqual(first["reps_at_max"], 10)
        self.assertEqual(first["max_volume"], 1000)
        self.assertEqual(first["sets"], 2)
        self.assertAlmostEqual(first["est_1rm"], 133.3)
        self.assertEqual(len(self.stats.exercise_progress(self.data["bench"], limit=1)), 1)

    def test_exercise_history_and_summary(self) -> None:
        s1, s2, _s3 = self.data["sessions"]
        history = self.stats.exercise_history(self.data["bench"])
        self.assertEqual([h["session_id"] for h in history], [s2, s1])
        self.assertEqual(history[1]["total_volume"], 1800)
        self.assertEqual(history[1]["sets_count"], 2)
        self.assertEqual(history[0]["routine"], "A")

        summary = self.stats.exercise_summary(self.data["bench"])
        self.assertEqual(summary["total_sessions"], 2)
        self.assertEqual(summary["all_time_max"], 110)
        self.assertEqual(summary["avg_volume"], 1175)
        self.assertEqual(summary["trend"], 10)
        self.assertIsNone(self.stats.exercise_summary(999))

    def test_category_volume(self) -> None:
        result = self.stats.category_volume(weeks=4, today=datetime.date(2024, 1, 10))
        self.assertEqual(
            [(r["name"], r["volume"], r["percentage"]) for r in result],
            [("Chest", 2350, 59), ("Legs", 1450, 36), (UNCATEGORIZED, 200, 5)],
        )
        self.assertEqual(
            self.stats.category_volume(weeks=1, today=datetime.date(2025, 1, 1)), []
        )

    def test_activity_calendar(self) -> None:
        days = self.stats.activity_calendar(weeks=2, today=datetime.date(2024, 1, 10))
        self.assertEqual(len(days), 14)
        self.assertEqual(days[0]["date"], "2023-12-28")
        self.assertEqual(days[-1]["date"], "2024-01-10")
        levels = {d["date"]: d["level"] for d in days if d["count"]}
        self.assertEqual(
            levels, {"2024-01-01": 2, "2024-01-03": 2, "2024-01-10": 1}
        )

    def test_intensity_level(self) -> None:
        self.assertEqual(StatisticsService.intensity_level(0, 9000), 0)
        self.assertEqual(StatisticsService.intensity_level(2, 100), 4)
        self.assertEqual(StatisticsService.intensity_level(1, 5000), 4)
        self.assertEqual(StatisticsService.intensity_level(1, 2500), 3)
        self.assertEqual(StatisticsService.intensity_level(1, 1000), 2)
        self.assertEqual(StatisticsService.intensity_level(1, 999), 1)

    def test_compare_sessions(self) -> None:
        s1, s2, _s3 = self.data["sessions"]
        result = self.stats.compare_sessions(s2, s1)
        self.assertEqual(result["older"]["id"], s1)
        self.assertEqual(result["newer"]["id"], s2)
        by_name = {e["exercise"]: e for e in result["exercises"]}
        self.assertEqual(by_name["Bench Press"]["weight_diff"], 10)
        self.assertEqual(by_name["Bench Press"]["volume_diff"], 550 - 1800)
        self.assertEqual(by_name["Squat"]["older_max_weight"], 0)
        self.assertEqual(result["total_older_volume"], 1800)
        self.assertEqual(result["total_newer_volume"], 1250)
        with self.assertRaises(ValueError):
            self.stats.compare_sessions(s1, 999)

    def test_year_in_review(self) -> None:
        review = self.stats.year_in_review(2024)
        self.assertEqual(review["total_sessions"], 3)
        self.assertEqual(review["total_sets"], 6)
        self.assertEqual(review["total_volume"], 4000)
        self.assertEqual(review["total_hours"], 2)
        self.assertEqual(review["top_exercise"], {"name": "Bench Press", "count": 3})
        self.assertEqual(review["top_routine"], {"name": "A", "count": 2})
        self.assertEqual(review["longest_streak"], 2)
        self.assertEqual(review["pr_count"], 3)
        self.assertEqual(review["best_pr"], {"name": "Squat", "weight": 150})
        self.assertEqual(review["monthly_volume"], {"Jan": 4000})
        self.assertIsNone(self.stats.year_in_review(2023))

    def test_streaks(self) -> None:
        self.assertEqual(
            self.stats.streaks(today=datetime.date(2024, 1, 11)),
            {"current": 1, "longest": 2, "longest_weeks": 2},
        )
        self.assertEqual(
            self.stats.streaks(today=datetime.date(2024, 2, 1))["current"], 0
        )

    def test_personal_records(self) -> None:
        self.assertEqual(
            self.stats.personal_records(),
            {self.data["bench"]: 110, self.data["squat"]: 150, self.data["curl"]: 20},
        )

    def test_measurement_changes(self) -> None:
        self.assertEqual(self.stats.measurement_changes(), {})
        self.measurements.log("2024-01-01", weight_kg=80, waist_cm=86)
        self.measurements.log("2024-02-01", weight_kg=78.5)
        changes = self.stats.measurement_changes()
        self.assertEqual(changes["weight_kg"], {"first": 80, "latest": 78.5, "change": -1.5})
        self.assertEqual(changes["waist_cm"]["change"], 0)
        self.assertNotIn("chest_cm", changes)


@pytest.mark.asyncio
async def test_dashboard(tmp_path):
    db_file = str(tmp_path / "dash.db")
    data = build_history(db_file)
    stats = StatisticsService(
        SessionRepository(db_file),
        SetLogRepository(db_file),
        dashboard_repo=AsyncDashboardRepository(db_file),
    )
    result = await stats.dashboard()
    assert result["routines"] == 1
    assert result["exercises"] == 3
    assert result["sessions"] == 3
    assert result["recent_routines"] == [{"id": data["routine"], "name": "A"}]


@pytest.mark.asyncio
async def test_dashboard_without_repo(tmp_path):
    db_file = str(tmp_path / "empty.db")
    stats = StatisticsService(SessionRepository(db_file), SetLogRepository(db_file))
    assert (await stats.dashboard())["recent_routines"] == []
