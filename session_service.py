from __future__ import annotations

import datetime
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from db import RoutineRepository, SessionRepository, SetLogRepository, utc_now
from models import LoggedSet, SetType
from tools import MathTools, RecordTools, REPS_INCREMENT, WEIGHT_INCREMENT

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = ("reps", "weight_kg", "set_number")
EDITABLE_FIELDS = NUMERIC_FIELDS + ("notes", "set_type", "is_warmup")


class SessionSaveError(Exception):
    """Raised when a finished session could not be persisted."""

    def __init__(self, message: str, session_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


@dataclass(frozen=True)
class PRNotification:
    exercise_id: int
    exercise_name: str
    weight: float


@dataclass(frozen=True)
class SessionExercise:
    id: int
    name: str
    category: Optional[str] = None


@dataclass
class SessionSummary:
    session_id: int
    total_volume: float
    sets_logged: int
    new_records: List[PRNotification] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "total_volume": self.total_volume,
            "sets_logged": self.sets_logged,
            "new_records": [
                {
                    "exercise_id": r.exercise_id,
                    "exercise": r.exercise_name,
                    "weight": r.weight,
                }
                for r in self.new_records
            ],
        }


class ActiveSession:
    """In-memory state of a workout that has not been saved yet.

    Sets are held per exercise as :class:`LoggedSet` values and replaced on
    every edit. ``prs`` starts from the full logged history and rises as
    heavier weights are entered; each rise is recorded in
    ``notifications``.
    """

    def __init__(
        self,
        routine_id: Optional[int],
        routine_name: str,
        exercises: List[SessionExercise],
        sets: Dict[int, List[LoggedSet]],
        previous_sets: Optional[Dict[int, List[LoggedSet]]] = None,
        prs: Optional[Dict[int, float]] = None,
        user_id: Optional[str] = None,
        started_at: Optional[str] = None,
    ) -> None:
        self.routine_id = routine_id
        self.routine_name = routine_name
        self.exercises = list(exercises)
        self.sets = {ex.id: list(sets.get(ex.id) or [self._empty(ex.id)]) for ex in self.exercises}
        self.previous_sets = previous_sets or {}
        self.prs = dict(prs or {})
        self.baseline_prs = dict(self.prs)
        self.user_id = user_id
        self.started_at = started_at or utc_now()
        self.current_index = 0
        self.completed: set[int] = set()
        self.notifications: List[PRNotification] = []

    @staticmethod
    def _empty(exercise_id: int, set_number: int = 1) -> LoggedSet:
        return LoggedSet(exercise_id=exercise_id, set_number=set_number)

    @property
    def current_exercise(self) -> Optional[SessionExercise]:
        if not self.exercises:
            return None
        return self.exercises[self.current_index]

    @property
    def current_sets(self) -> List[LoggedSet]:
        ex = self.current_exercise
        return list(self.sets[ex.id]) if ex else []

    @property
    def current_previous_sets(self) -> List[LoggedSet]:
        ex = self.current_exercise
        return list(self.previous_sets.get(ex.id, [])) if ex else []

    def _resolve(self, exercise_id: Optional[int]) -> SessionExercise:
        if exercise_id is None:
            ex = self.current_exercise
            if ex is None:
                raise ValueError("session has no exercises")
            return ex
        for ex in self.exercises:
            if ex.id == exercise_id:
                return ex
        raise ValueError("exercise not in session")

    def _set_at(self, exercise: SessionExercise, index: int) -> LoggedSet:
        sets = self.sets[exercise.id]
        if index < 0 or index >= len(sets):
            raise ValueError("set not found")
        return sets[index]

    def update_set(
        self, index: int, field_name: str, value: Any, exercise_id: Optional[int] = None
    ) -> LoggedSet:
        """Change one field of a set, coercing numeric input permissively."""
        if field_name not in EDITABLE_FIELDS:
            raise ValueError(f"unknown set field {field_name}")
        ex = self._resolve(exercise_id)
        current = self._set_at(ex, index)
        updated = LoggedSet.from_row({**current.model_dump(), field_name: value})
        self.sets[ex.id][index] = updated

        if field_name == "weight_kg" and updated.weight_kg > 0:
            if updated.weight_kg > self.prs.get(ex.id, 0.0):
                self.prs[ex.id] = updated.weight_kg
                note = PRNotification(ex.id, ex.name, updated.weight_kg)
                self.notifications.append(note)
                logger.info("New PR for %s: %s kg", ex.name, updated.weight_kg)
        return updated

    def adjust_weight(
        self,
        index: int,
        delta: float = WEIGHT_INCREMENT,
        exercise_id: Optional[int] = None,
    ) -> LoggedSet:
        ex = self._resolve(exercise_id)
        current = self._set_at(ex, index)
        return self.update_set(
            index, "weight_kg", max(0.0, current.weight_kg + delta), ex.id
        )

    def adjust_reps(
        self,
        index: int,
        delta: int = REPS_INCREMENT,
        exercise_id: Optional[int] = None,
    ) -> LoggedSet:
        ex = self._resolve(exercise_id)
        current = self._set_at(ex, index)
        return self.update_set(index, "reps", max(0, current.reps + delta), ex.id)

    def add_set(self, exercise_id: Optional[int] = None) -> LoggedSet:
        """Append a set repeating the reps and weight of the last one."""
        ex = self._resolve(exercise_id)
        sets = self.sets[ex.id]
        last = sets[-1] if sets else self._empty(ex.id)
        new = LoggedSet(
            exercise_id=ex.id,
            reps=last.reps,
            weight_kg=last.weight_kg,
            set_number=len(sets) + 1,
        )
        sets.append(new)
        return new

    def remove_set(self, index: int, exercise_id: Optional[int] = None) -> bool:
        """Remove a set and renumber the rest; the last set is never removed."""
        ex = self._resolve(exercise_id)
        sets = self.sets[ex.id]
        if len(sets) <= 1:
            return False
        self._set_at(ex, index)
        remaining = [s for i, s in enumerate(sets) if i != index]
        self.sets[ex.id] = [
            s.model_copy(update={"set_number": i}) for i, s in enumerate(remaining, start=1)
        ]
        return True

    def exercise_has_data(self, exercise_id: int) -> bool:
        return any(not s.is_empty for s in self.sets.get(exercise_id, []))

    def go_to_exercise(self, index: int) -> SessionExercise:
        if index < 0 or index >= len(self.exercises):
            raise ValueError("exercise index out of range")
        ex = self.current_exercise
        if ex is not None and self.exercise_has_data(ex.id):
            self.completed.add(ex.id)
        self.current_index = index
        return self.exercises[index]

    def next_exercise(self) -> Optional[SessionExercise]:
        if self.current_index < len(self.exercises) - 1:
            return self.go_to_exercise(self.current_index + 1)
        return None

    def previous_exercise(self) -> Optional[SessionExercise]:
        if self.current_index > 0:
            return self.go_to_exercise(self.current_index - 1)
        return None

    def all_sets(self) -> List[LoggedSet]:
        return [s for ex in self.exercises for s in self.sets[ex.id]]

    def logged_sets(self) -> List[LoggedSet]:
        return [s for s in self.all_sets() if not s.is_empty]

    def total_volume(self) -> float:
        return MathTools.volume(self.all_sets())

    def new_records(self) -> List[PRNotification]:
        """Exercises whose heaviest entered weight beats the historical PR."""
        records = []
        for ex in self.exercises:
            best = RecordTools.personal_record(self.sets[ex.id])
            if best > 0 and best > self.baseline_prs.get(ex.id, 0.0):
                records.append(PRNotification(ex.id, ex.name, best))
        return records

    def to_dict(self) -> dict:
        return {
            "routine_id": self.routine_id,
            "routine": self.routine_name,
            "started_at": self.started_at,
            "current_index": self.current_index,
            "completed": sorted(self.completed),
            "total_volume": self.total_volume(),
            "exercises": [
                {
                    "id": ex.id,
                    "name": ex.name,
                    "category": ex.category,
                    "pr": self.prs.get(ex.id, 0.0),
                    "sets": [
                        s.model_dump(exclude={"id", "session_id"}, mode="json")
                        for s in self.sets[ex.id]
                    ],
                    "previous_sets": [
                        s.model_dump(include={"reps", "weight_kg", "set_number"})
                        for s in self.previous_sets.get(ex.id, [])
                    ],
                }
                for ex in self.exercises
            ],
        }


class SessionService:
    """Start, pre-fill and save workout sessions."""

    def __init__(
        self,
        routine_repo: RoutineRepository,
        session_repo: SessionRepository,
        set_repo: SetLogRepository,
    ) -> None:
        self.routines = routine_repo
        self.sessions = session_repo
        self.sets = set_repo

    def start(self, routine_id: int, user_id: Optional[str] = None) -> ActiveSession:
        name, _owner, _created = self.routines.fetch_detail(routine_id)
        exercises = [
            SessionExercise(ex_id, ex_name, category)
            for ex_id, ex_name, category, _pos in self.routines.fetch_exercises(routine_id)
        ]
        ids = [ex.id for ex in exercises]
        previous = self.previous_sets(routine_id)
        return ActiveSession(
            routine_id=routine_id,
            routine_name=name,
            exercises=exercises,
            sets=self.smart_sets(previous, ids),
            previous_sets=previous,
            prs=self.exercise_prs(ids),
            user_id=user_id,
        )

    def previous_sets(self, routine_id: int) -> Dict[int, List[LoggedSet]]:
        """Return the sets of the routine's most recent session per exercise."""
        try:
            last_id = self.sessions.last_for_routine(routine_id)
            if last_id is None:
                return {}
            logs = self.sets.fetch_for_session(last_id)
        except sqlite3.Error:
            logger.exception("Error fetching previous sets for routine %s", routine_id)
            return {}
        grouped: Dict[int, List[LoggedSet]] = {}
        for log in sorted(logs, key=lambda s: s.set_number):
            grouped.setdefault(log.exercise_id, []).append(log)
        return grouped

    @staticmethod
    def smart_sets(
        previous: Dict[int, List[LoggedSet]], exercise_ids: List[int]
    ) -> Dict[int, List[LoggedSet]]:
        """Pre-fill each exercise with last session's reps, weight and numbering."""
        result: Dict[int, List[LoggedSet]] = {}
        for ex_id in exercise_ids:
            prev = previous.get(ex_id)
            if prev:
                result[ex_id] = [
                    LoggedSet(
                        exercise_id=ex_id,
                        reps=s.reps,
                        weight_kg=s.weight_kg,
                        set_number=s.set_number,
                        set_type=SetType.NORMAL,
                    )
                    for s in prev
                ]
            else:
                result[ex_id] = [LoggedSet(exercise_id=ex_id, set_number=1)]
        return result

    def exercise_prs(self, exercise_ids: List[int]) -> Dict[int, float]:
        """Heaviest weight ever logged for each exercise."""
        try:
            return self.sets.max_weights(exercise_ids)
        except sqlite3.Error:
            logger.exception("Error fetching exercise PRs")
            return {}

    def finish(
        self, active: ActiveSession, duration_seconds: Optional[int] = None
    ) -> SessionSummary:
        """Persist ``active`` and return a summary.

        The session row is written first. If writing its sets fails the row
        is left in place and :class:`SessionSaveError` carries its id.
        """
        completed_at = utc_now()
        if duration_seconds is None:
            duration_seconds = self._elapsed(active.started_at, completed_at)
        try:
            session_id = self.sessions.create(
                active.routine_id,
                user_id=active.user_id,
                created_at=active.started_at,
                completed_at=completed_at,
                duration_seconds=duration_seconds,
            )
        except (sqlite3.Error, ValueError) as e:
            logger.error("Error saving session: %s", e)
            raise SessionSaveError("could not save session") from e

        logged = active.logged_sets()
        try:
            if logged:
                self.sets.bulk_add(session_id, logged)
        except (sqlite3.Error, ValueError) as e:
            logger.error("Error saving sets for session %s: %s", session_id, e)
            raise SessionSaveError("could not save sets", session_id=session_id) from e

        summary = SessionSummary(
            session_id=session_id,
            total_volume=active.total_volume(),
            sets_logged=len(logged),
            new_records=active.new_records(),
        )
        logger.info(
            "Saved session %s with %d sets, volume %.1f",
            session_id,
            summary.sets_logged,
            summary.total_volume,
        )
        return summary

    @staticmethod
    def _elapsed(start: str, end: str) -> Optional[int]:
        try:
            t0 = datetime.datetime.fromisoformat(start)
            t1 = datetime.datetime.fromisoformat(end)
        except ValueError:
            return None
        if t0.tzinfo is None:
            t0 = t0.replace(tzinfo=datetime.timezone.utc)
        return max(int((t1 - t0).total_seconds()), 0)
