from __future__ import annotations
import asyncio
import datetime
import logging
import sqlite3
from typing import Dict, List, Optional

from db import (
    AsyncDashboardRepository,
    BodyMeasurementRepository,
    SessionRepository,
    SetLogRepository,
    SettingsRepository,
)
from tools import MathTools, RecordTools, round_half_up

logger = logging.getLogger(__name__)

NO_ROUTINE = "No routine"
UNCATEGORIZED = "Uncategorized"


class StatisticsService:
    """Compute workout statistics for analysis."""

    def __init__(
        self,
        session_repo: SessionRepository,
        set_repo: SetLogRepository,
        dashboard_repo: AsyncDashboardRepository | None = None,
        measurement_repo: BodyMeasurementRepository | None = None,
        settings_repo: SettingsRepository | None = None,
    ) -> None:
        self.sessions = session_repo
        self.sets = set_repo
        self.dashboard_repo = dashboard_repo
        self.measurements = measurement_repo
        self.settings = settings_repo

    def _streak_gap(self) -> int:
        if self.settings is not None:
            return self.settings.get_int("day_streak_gap", 2)
        return 2

    def _history(self, **filters) -> List[Dict]:
        try:
            return self.sets.fetch_history(**filters)
        except sqlite3.Error:
            logger.exception("Error fetching set history")
            return []

    def _session_rows(self, **filters) -> List[Dict]:
        try:
            return self.sessions.fetch_all_sessions(**filters)
        except sqlite3.Error:
            logger.exception("Error fetching sessions")
            return []

    @staticmethod
    def _volume_by_session(history: List[Dict]) -> Dict[int, float]:
        grouped: Dict[int, list] = {}
        for row in history:
            grouped.setdefault(row["session_id"], []).append(row)
        return {sid: MathTools.volume(rows) for sid, rows in grouped.items()}

    @staticmethod
    def _week_start(day: datetime.date) -> datetime.date:
        return day - datetime.timedelta(days=day.weekday())

    async def dashboard(self) -> Dict:
        """Counts and recent routines, queried concurrently."""
        if self.dashboard_repo is None:
            return {"routines": 0, "exercises": 0, "sessions": 0, "recent_routines": []}
        repo = self.dashboard_repo
        routines, exercises, sessions, recent = await asyncio.gather(
            repo.count("routines"),
            repo.count("exercises"),
            repo.count("sessions"),
            repo.recent_routines(3),
        )
        return {
            "routines": routines,
            "exercises": exercises,
            "sessions": sessions,
            "recent_routines": [{"id": rid, "name": name} for rid, name in recent],
        }

    def overview(self) -> Dict:
        """Return totals, weekly volume, top records and routine frequency."""
        sessions = self._session_rows(descending=False)
        history = self._history()
        volumes = self._volume_by_session(history)

        weekly: Dict[str, float] = {}
        routine_counts: Dict[str, int] = {}
        for s in sessions:
            name = s["routine_name"] or NO_ROUTINE
            routine_counts[name] = routine_counts.get(name, 0) + 1
            day = RecordTools.to_date(s["created_at"])
            if day is None:
                continue
            key = self._week_start(day).isoformat()
            weekly[key] = weekly.get(key, 0.0) + volumes.get(s["id"], 0.0)

        records: Dict[int, Dict] = {}
        for row in history:
            item = records.setdefault(
                row["exercise_id"],
                {
                    "exercise_id": row["exercise_id"],
                    "exercise": row["exercise"],
                    "max_weight": 0.0,
                    "max_volume": 0.0,
                },
            )
            item["max_weight"] = max(item["max_weight"], row["weight_kg"])
            item["max_volume"] = max(item["max_volume"], row["weight_kg"] * row["reps"])

        prs = sorted(records.values(), key=lambda r: r["max_weight"], reverse=True)[:10]
        frequency = sorted(
            ({"name": n, "count": c} for n, c in routine_counts.items()),
            key=lambda r: r["count"],
            reverse=True,
        )[:5]
        weekly_volume = [
            {"week": week, "volume": weekly[week]} for week in sorted(weekly)[-8:]
        ]
        return {
            "total_sessions": len(sessions),
            "total_volume": MathTools.volume(history),
            "weekly_volume": weekly_volume,
            "prs": prs,
            "routine_frequency": frequency,
        }

    def session_volume(self, session_id: int) -> float:
        return MathTools.volume(self.sets.fetch_for_session(session_id))

    def exercise_progress(self, exercise_id: int, limit: int = 20) -> List[Dict]:
        """Per-day best weight and set volume, oldest first."""
        by_date: Dict[str, Dict] = {}
        for row in self._history(exercise_id=exercise_id):
            day = RecordTools.to_date(row["created_at"])
            if day is None:
                continue
            key = day.isoformat()
            item = by_date.setdefault(
                key,
                {"date": key, "max_weight": 0.0, "max_volume": 0.0, "reps_at_max": 0, "sets": 0},
            )
            if row["weight_kg"] > item["max_weight"]:
                item["max_weight"] = row["weight_kg"]
                item["reps_at_max"] = row["reps"]
            item["max_volume"] = max(item["max_volume"], row["weight_kg"] * row["reps"])
            item["sets"] += 1
        result = []
        for key in sorted(by_date):
            item = by_date[key]
            item["est_1rm"] = MathTools.estimate_1rm(item["max_weight"], item["reps_at_max"])
            result.append(item)
        return result[-limit:] if limit > 0 else result

    def exercise_history(self, exercise_id: int) -> List[Dict]:
        """Sets of one exercise grouped by session, newest first."""
        sessions: Dict[int, Dict] = {}
        for row in self._history(exercise_id=exercise_id):
            item = sessions.setdefault(
                row["session_id"],
                {
                    "session_id": row["session_id"],
                    "date": row["created_at"],
                    "routine": row["routine"] or NO_ROUTINE,
                    "sets": [],
                },
            )
            item["sets"].append(
                {"reps": row["reps"], "weight_kg": row["weight_kg"], "set_number": row["set_number"]}
            )
        result = []
        for item in sessions.values():
            item["max_weight"] = RecordTools.personal_record(item["sets"])
            item["total_volume"] = MathTools.volume(item["sets"])
            item["sets_count"] = len(item["sets"])
            result.append(item)
        return sorted(result, key=lambda r: (r["date"], r["session_id"]), reverse=True)

    def exercise_summary(self, exercise_id: int) -> Optional[Dict]:
        history = self.exercise_history(exercise_id)
        if not history:
            return None
        return {
            "total_sessions": len(history),
            "all_time_max": max(h["max_weight"] for h in history),
            "avg_volume": int(
                round_half_up(sum(h["total_volume"] for h in history) / len(history))
            ),
            "trend": history[0]["max_weight"] - history[-1]["max_weight"],
        }

    def category_volume(
        self, weeks: int = 4, today: Optional[datetime.date] = None
    ) -> List[Dict]:
        """Volume per category over the last ``weeks`` weeks with shares."""
        today = today or datetime.date.today()
        start = (today - datetime.timedelta(weeks=weeks)).isoformat()
        totals: Dict[str, float] = {}
        for row in self._history(start=start):
            name = row["category"] or UNCATEGORIZED
            totals[name] = totals.get(name, 0.0) + MathTools.volume([row])
        total = sum(totals.values())
        result = [
            {
                "name": name,
                "volume": volume,
                "percentage": int(round_half_up(volume / total * 100)) if total > 0 else 0,
            }
            for name, volume in totals.items()
            if volume > 0
        ]
        return sorted(result, key=lambda r: r["volume"], reverse=True)

    @staticmethod
    def intensity_level(count: int, volume: float) -> int:
        """Map a day's session count and volume to a level from 0 to 4."""
        if count <= 0:
            return 0
        if count >= 2 or volume >= 5000:
            return 4
        if volume >= 2500:
            return 3
        if volume >= 1000:
            return 2
        return 1

    def activity_calendar(
        self, weeks: int = 12, today: Optional[datetime.date] = None
    ) -> List[Dict]:
        """Return one entry per day for the last ``weeks`` weeks, oldest first."""
        today = today or datetime.date.today()
        total_days = weeks * 7
        first = today - datetime.timedelta(days=total_days - 1)
        sessions = self._session_rows(start=first.isoformat(), descending=False)
        volumes = self._volume_by_session(
            self._history(session_ids=[s["id"] for s in sessions])
        ) if sessions else {}

        activity: Dict[datetime.date, Dict] = {}
        for s in sessions:
            day = RecordTools.to_date(s["created_at"])
            if day is None:
                continue
            item = activity.setdefault(day, {"count": 0, "volume": 0.0})
            item["count"] += 1
            item["volume"] += volumes.get(s["id"], 0.0)

        days = []
        for offset in range(total_days):
            day = first + datetime.timedelta(days=offset)
            item = activity.get(day, {"count": 0, "volume": 0.0})
            days.append(
                {
                    "date": day.isoformat(),
                    "count": item["count"],
                    "volume": item["volume"],
                    "level": self.intensity_level(item["count"], item["volume"]),
                }
            )
        return days

    def compare_sessions(self, session_a: int, session_b: int) -> Dict:
        """Compare two sessions exercise by exercise, older against newer."""
        first = self.sessions.fetch_detail(session_a)
        second = self.sessions.fetch_detail(session_b)
        older, newer = sorted(
            (first, second), key=lambda s: (s["created_at"], s["id"])
        )
        history = self._history(session_ids=[older["id"], newer["id"]])
        per_exercise: Dict[int, Dict] = {}
        for row in history:
            item = per_exercise.setdefault(
                row["exercise_id"],
                {"exercise": row["exercise"], "older": [], "newer": []},
            )
            side = "older" if row["session_id"] == older["id"] else "newer"
            item[side].append(row)

        exercises = []
        for ex_id, item in per_exercise.items():
            older_max = RecordTools.personal_record(item["older"])
            newer_max = RecordTools.personal_record(item["newer"])
            if older_max <= 0 and newer_max <= 0:
                continue
            older_volume = MathTools.volume(item["older"])
            newer_volume = MathTools.volume(item["newer"])
            exercises.append(
                {
                    "exercise_id": ex_id,
                    "exercise": item["exercise"],
                    "older_max_weight": older_max,
                    "newer_max_weight": newer_max,
                    "weight_diff": newer_max - older_max,
                    "older_volume": older_volume,
                    "newer_volume": newer_volume,
                    "volume_diff": newer_volume - older_volume,
                }
            )
        return {
            "older": older,
            "newer": newer,
            "exercises": exercises,
            "total_older_volume": sum(e["older_volume"] for e in exercises),
            "total_newer_volume": sum(e["newer_volume"] for e in exercises),
        }

    def year_in_review(self, year: int) -> Optional[Dict]:
        """Summarize a calendar year of training, or ``None`` if it was empty."""
        start = f"{year}-01-01"
        end = f"{year + 1}-01-01"
        sessions = []
        for s in self._session_rows(start=start, end=end, descending=False):
            day = RecordTools.to_date(s["created_at"])
            if day is not None and day.year == year:
                sessions.append(s)
        if not sessions:
            return None
        session_ids = {s["id"] for s in sessions}
        history = [
            r for r in self._history(start=start, end=end) if r["session_id"] in session_ids
        ]

        routine_counts: Dict[str, int] = {}
        monthly: Dict[str, float] = {}
        total_time = 0
        for s in sessions:
            name = s["routine_name"] or NO_ROUTINE
            routine_counts[name] = routine_counts.get(name, 0) + 1
            total_time += s["duration_seconds"] or 0
            month = RecordTools.to_date(s["created_at"]).strftime("%b")
            monthly.setdefault(month, 0.0)

        exercise_counts: Dict[str, int] = {}
        prs: Dict[str, float] = {}
        for row in history:
            name = row["exercise"]
            exercise_counts[name] = exercise_counts.get(name, 0) + 1
            prs[name] = max(prs.get(name, 0.0), row["weight_kg"])
            month = RecordTools.to_date(row["created_at"]).strftime("%b")
            monthly[month] = monthly.get(month, 0.0) + MathTools.volume([row])

        top_exercise = max(exercise_counts.items(), key=lambda kv: kv[1], default=None)
        top_routine = max(routine_counts.items(), key=lambda kv: kv[1], default=None)
        best_pr = max(prs.items(), key=lambda kv: kv[1], default=None)
        return {
            "year": year,
            "total_sessions": len(sessions),
            "total_volume": MathTools.volume(history),
            "total_sets": len(history),
            "total_hours": int(round_half_up(total_time / 3600)),
            "top_exercise": {"name": top_exercise[0], "count": top_exercise[1]} if top_exercise else None,
            "top_routine": {"name": top_routine[0], "count": top_routine[1]} if top_routine else None,
            "longest_streak": RecordTools.longest_day_streak(
                [s["created_at"] for s in sessions], self._streak_gap()
            ),
            "pr_count": len(prs),
            "best_pr": {"name": best_pr[0], "weight": best_pr[1]} if best_pr else None,
            "monthly_volume": monthly,
        }

    def streaks(self, today: Optional[datetime.date] = None) -> Dict[str, int]:
        """Return current and longest day streaks and the longest week streak."""
        timestamps = [s["created_at"] for s in self._session_rows()]
        gap = self._streak_gap()
        return {
            "current": RecordTools.current_day_streak(timestamps, today, gap),
            "longest": RecordTools.longest_day_streak(timestamps, gap),
            "longest_weeks": RecordTools.longest_week_streak(timestamps),
        }

    def personal_records(self) -> Dict[int, float]:
        return RecordTools.personal_records(self._history())

    def measurement_changes(self) -> Dict[str, Dict[str, float]]:
        """Change of each body measurement between its first and latest entry."""
        if self.measurements is None:
            return {}
        history = self.measurements.fetch_history()
        changes: Dict[str, Dict[str, float]] = {}
        for field in self.measurements.FIELDS:
            values = [row[field] for row in history if row[field] is not None]
            if not values:
                continue
            changes[field] = {
                "first": values[0],
                "latest": values[-1],
                "change": round(values[-1] - values[0], 2),
            }
        return changes
