import datetime
import logging
import time
import uuid
from typing import Dict, List

from fastapi import Body, FastAPI, HTTPException, Request, Response

from config import APP_VERSION, DEFAULT_DB_PATH
from db import (
    AsyncDashboardRepository,
    BodyMeasurementRepository,
    CategoryRepository,
    ExerciseRepository,
    FriendshipRepository,
    GoalRepository,
    ProfileRepository,
    RoutineRepository,
    SessionRepository,
    SetLogRepository,
    SettingsRepository,
    SharedRoutineRepository,
)
from goal_service import GoalService
from models import LoggedSet
from session_service import ActiveSession, SessionSaveError, SessionService
from social_service import SocialService
from stats_service import StatisticsService
from tools import MathTools, REPS_INCREMENT, REST_TIMER_PRESETS, SET_TYPES, WEIGHT_INCREMENT

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple in-memory rate limiter."""

    def __init__(self, limit: int = 60, window: int = 60) -> None:
        self.limit = limit
        self.window = window
        self.requests: dict[str, list[float]] = {}

    async def __call__(self, request: Request, call_next):
        ip = request.client.host if request.client else "anon"
        now = time.time()
        history = [t for t in self.requests.get(ip, []) if now - t < self.window]
        if len(history) >= self.limit:
            return Response("rate limit exceeded", status_code=429)
        history.append(now)
        self.requests[ip] = history
        return await call_next(request)


class TrainingAPI:
    """Provides REST endpoints for training logs and statistics."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        yaml_path: str = "settings.yaml",
        *,
        rate_limit: int | None = None,
        rate_window: int = 60,
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.categories = CategoryRepository(db_path)
        self.exercises = ExerciseRepository(db_path)
        self.routines = RoutineRepository(db_path)
        self.sessions = SessionRepository(db_path)
        self.sets = SetLogRepository(db_path)
        self.goals = GoalRepository(db_path)
        self.profiles = ProfileRepository(db_path)
        self.friendships = FriendshipRepository(db_path)
        self.measurements = BodyMeasurementRepository(db_path)
        self.shared_routines = SharedRoutineRepository(db_path)
        self.dashboard_repo = AsyncDashboardRepository(db_path)
        self.session_service = SessionService(self.routines, self.sessions, self.sets)
        self.statistics = StatisticsService(
            self.sessions,
            self.sets,
            self.dashboard_repo,
            self.measurements,
            self.settings,
        )
        self.goal_service = GoalService(self.goals, self.sets)
        self.social = SocialService(
            self.profiles,
            self.friendships,
            self.sessions,
            self.sets,
            self.routines,
            self.shared_routines,
        )
        self.active: dict[str, ActiveSession] = {}
        self.app = FastAPI(
            title="LiftLog API",
            description="REST API for strength training logs and analytics",
            version=APP_VERSION,
        )
        if rate_limit is not None:
            limiter = RateLimiter(limit=rate_limit, window=rate_window)
            self.app.middleware("http")(limiter)
        self._setup_routes()

    def _active_session(self, token: str) -> ActiveSession:
        active = self.active.get(token)
        if active is None:
            raise HTTPException(status_code=404, detail="active session not found")
        return active

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.routines.fetch_all_routines()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/categories")
        def list_categories():
            return [{"id": cid, "name": name} for cid, name in self.categories.fetch_all_categories()]

        @self.app.post("/categories")
        def add_category(name: str):
            try:
                return {"id": self.categories.add(name)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.put("/categories/{category_id}")
        def rename_category(category_id: int, name: str):
            try:
                self.categories.rename(category_id, name)
                return {"status": "updated"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.delete("/categories/{category_id}")
        def delete_category(category_id: int):
            try:
                self.categories.delete(category_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/exercises")
        def list_exercises(category_id: int = None):
            return [
                {"id": eid, "name": name, "category_id": cat_id, "category": cat}
                for eid, name, cat_id, cat in self.exercises.fetch_all_exercises(category_id)
            ]

        @self.app.post("/exercises")
        def add_exercise(name: str, category_id: int = None):
            try:
                return {"id": self.exercises.add(name, category_id)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.get("/exercises/{exercise_id}")
        def get_exercise(exercise_id: int):
            try:
                name, cat_id, cat = self.exercises.fetch_detail(exercise_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return {
                "id": exercise_id,
                "name": name,
                "category_id": cat_id,
                "category": cat,
                "pr": self.sets.max_weight(exercise_id),
            }

        @self.app.put("/exercises/{exercise_id}")
        def update_exercise(exercise_id: int, name: str = None, category_id: int = None):
            try:
                self.exercises.update(exercise_id, name, category_id)
                return {"status": "updated"}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.delete("/exercises/{exercise_id}")
        def delete_exercise(exercise_id: int):
            try:
                self.exercises.delete(exercise_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/exercises/{exercise_id}/history")
        def exercise_history(exercise_id: int):
            return {
                "summary": self.statistics.exercise_summary(exercise_id),
                "sessions": self.statistics.exercise_history(exercise_id),
            }

        @self.app.get("/exercises/{exercise_id}/progress")
        def exercise_progress(exercise_id: int, limit: int = 20):
            return self.statistics.exercise_progress(exercise_id, limit)

        @self.app.get("/routines")
        def list_routines():
            return [
                {"id": rid, "name": name, "created_at": created}
                for rid, name, created in self.routines.fetch_all_routines()
            ]

        @self.app.post("/routines")
        def create_routine(name: str, user_id: str = None):
            try:
                return {"id": self.routines.create(name, user_id)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.get("/routines/{routine_id}")
        def get_routine(routine_id: int):
            try:
                name, user_id, created = self.routines.fetch_detail(routine_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return {
                "id": routine_id,
                "name": name,
                "user_id": user_id,
                "created_at": created,
                "exercises": [
                    {"id": eid, "name": ex_name, "category": cat, "position": pos}
                    for eid, ex_name, cat, pos in self.routines.fetch_exercises(routine_id)
                ],
            }

        @self.app.put("/routines/{routine_id}")
        def rename_routine(routine_id: int, name: str):
            try:
                self.routines.rename(routine_id, name)
                return {"status": "updated"}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.delete("/routines/{routine_id}")
        def delete_routine(routine_id: int):
            try:
                self.routines.delete(routine_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.post("/routines/{routine_id}/exercises")
        def add_routine_exercise(routine_id: int, exercise_id: int):
            try:
                return {"id": self.routines.add_exercise(routine_id, exercise_id)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.put("/routines/{routine_id}/exercises")
        def set_routine_exercises(routine_id: int, exercise_ids: List[int] = Body(...)):
            try:
                self.routines.set_exercises(routine_id, exercise_ids)
                return {"status": "updated"}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.delete("/routines/{routine_id}/exercises/{exercise_id}")
        def remove_routine_exercise(routine_id: int, exercise_id: int):
            self.routines.remove_exercise(routine_id, exercise_id)
            return {"status": "removed"}

        @self.app.post("/sessions/start")
        def start_session(routine_id: int, user_id: str = None):
            try:
                active = self.session_service.start(routine_id, user_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            token = uuid.uuid4().hex
            self.active[token] = active
            return {"token": token, "session": active.to_dict()}

        @self.app.get("/sessions/active/{token}")
        def get_active_session(token: str):
            active = self._active_session(token)
            return {
                **active.to_dict(),
                "notifications": [
                    {"exercise_id": n.exercise_id, "exercise": n.exercise_name, "weight": n.weight}
                    for n in active.notifications
                ],
            }

        @self.app.put("/sessions/active/{token}/sets/{index}")
        def update_active_set(
            token: str, index: int, field: str, value: str = "", exercise_id: int = None
        ):
            active = self._active_session(token)
            before = len(active.notifications)
            try:
                updated = active.update_set(index, field, value, exercise_id)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            new_pr = None
            if len(active.notifications) > before:
                note = active.notifications[-1]
                new_pr = {"exercise": note.exercise_name, "weight": note.weight}
            return {"set": updated.model_dump(mode="json"), "new_pr": new_pr}

        @self.app.post("/sessions/active/{token}/sets/{index}/adjust")
        def adjust_active_set(
            token: str, index: int, field: str, direction: int = 1, exercise_id: int = None
        ):
            active = self._active_session(token)
            if direction not in (1, -1):
                raise HTTPException(status_code=400, detail="direction must be 1 or -1")
            try:
                if field == "weight_kg":
                    step = self.settings.get_float("weight_increment", WEIGHT_INCREMENT)
                    updated = active.adjust_weight(index, step * direction, exercise_id)
                elif field == "reps":
                    updated = active.adjust_reps(index, REPS_INCREMENT * direction, exercise_id)
                else:
                    raise ValueError(f"cannot adjust {field}")
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return updated.model_dump(mode="json")

        @self.app.post("/sessions/active/{token}/sets")
        def add_active_set(token: str, exercise_id: int = None):
            active = self._active_session(token)
            try:
                new = active.add_set(exercise_id)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return new.model_dump(mode="json")

        @self.app.delete("/sessions/active/{token}/sets/{index}")
        def remove_active_set(token: str, index: int, exercise_id: int = None):
            active = self._active_session(token)
            try:
                removed = active.remove_set(index, exercise_id)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"removed": removed}

        @self.app.post("/sessions/active/{token}/navigate")
        def navigate_active_session(token: str, index: int):
            active = self._active_session(token)
            try:
                ex = active.go_to_exercise(index)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"current_index": active.current_index, "exercise": ex.name}

        @self.app.post("/sessions/active/{token}/finish")
        def finish_active_session(token: str, duration_seconds: int = None):
            active = self._active_session(token)
            try:
                summary = self.session_service.finish(active, duration_seconds)
            except SessionSaveError as e:
                if e.session_id is None:
                    raise HTTPException(status_code=500, detail=str(e))
                del self.active[token]
                raise HTTPException(
                    status_code=500,
                    detail={"message": str(e), "session_id": e.session_id},
                )
            del self.active[token]
            return summary.to_dict()

        @self.app.delete("/sessions/active/{token}")
        def discard_active_session(token: str):
            self._active_session(token)
            del self.active[token]
            return {"status": "discarded"}

        @self.app.get("/sessions")
        def list_sessions(start_date: str = None, end_date: str = None, user_id: str = None):
            return self.sessions.fetch_all_sessions(
                start_date, end_date, [user_id] if user_id else None
            )

        @self.app.get("/sessions/{session_id}")
        def get_session(session_id: int):
            try:
                detail = self.sessions.fetch_detail(session_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            sets = self.sets.fetch_for_session(session_id)
            return {
                **detail,
                "volume": MathTools.volume(sets),
                "sets": [s.model_dump(mode="json") for s in sets],
            }

        @self.app.delete("/sessions/{session_id}")
        def delete_session(session_id: int):
            try:
                self.sessions.delete(session_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.post("/sessions/{session_id}/sets")
        def add_set(session_id: int, entry: Dict = Body(...)):
            try:
                self.sessions.fetch_detail(session_id)
                logged = LoggedSet.from_row({**entry, "session_id": session_id})
                return {"id": self.sets.add(logged)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.put("/sets/{set_id}")
        def update_set(set_id: int, reps: int = None, weight_kg: float = None, notes: str = None):
            try:
                self.sets.update(set_id, reps, weight_kg, notes)
                return {"status": "updated"}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.delete("/sets/{set_id}")
        def delete_set(set_id: int):
            try:
                self.sets.remove(set_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/set_types")
        def list_set_types():
            return SET_TYPES

        @self.app.get("/stats/dashboard")
        async def stats_dashboard():
            return await self.statistics.dashboard()

        @self.app.get("/stats/overview")
        def stats_overview():
            return self.statistics.overview()

        @self.app.get("/stats/records")
        def stats_records():
            return [
                {"exercise_id": ex_id, "weight": weight}
                for ex_id, weight in self.statistics.personal_records().items()
            ]

        @self.app.get("/stats/categories")
        def stats_categories(weeks: int = 4):
            return self.statistics.category_volume(weeks)

        @self.app.get("/stats/calendar")
        def stats_calendar(weeks: int = 12):
            return self.statistics.activity_calendar(weeks)

        @self.app.get("/stats/streaks")
        def stats_streaks():
            return self.statistics.streaks()

        @self.app.get("/stats/compare")
        def stats_compare(session_a: int, session_b: int):
            try:
                return self.statistics.compare_sessions(session_a, session_b)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/stats/year/{year}")
        def stats_year(year: int):
            review = self.statistics.year_in_review(year)
            if review is None:
                raise HTTPException(status_code=404, detail="no sessions that year")
            return review

        @self.app.get("/stats/session/{session_id}/volume")
        def stats_session_volume(session_id: int):
            return {"volume": self.statistics.session_volume(session_id)}

        @self.app.get("/goals")
        def list_goals():
            return self.goal_service.list_with_progress()

        @self.app.post("/goals")
        def add_goal(exercise_id: int, target_weight: float):
            try:
                return {"id": self.goal_service.add(exercise_id, target_weight)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.delete("/goals/{goal_id}")
        def delete_goal(goal_id: int):
            try:
                self.goal_service.delete(goal_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/calculator/1rm")
        def calculator_1rm(weight: float = 0.0, reps: float = 0.0):
            return {
                "epley": MathTools.epley_1rm(weight, reps),
                "brzycki": MathTools.brzycki_1rm(weight, reps),
                "estimate": MathTools.estimate_1rm(weight, reps),
            }

        @self.app.get("/calculator/table")
        def calculator_table(one_rm: float = 0.0):
            return list(MathTools.rep_percentages(one_rm))

        @self.app.get("/timer/presets")
        def timer_presets():
            return {
                "presets": list(REST_TIMER_PRESETS),
                "default": self.settings.get_int("rest_timer_default", 90),
            }

        @self.app.get("/measurements")
        def list_measurements(start_date: str = None, end_date: str = None):
            return self.measurements.fetch_history(start_date, end_date)

        @self.app.post("/measurements")
        def log_measurement(values: Dict = Body(...)):
            values = dict(values)
            date = values.pop("date", None) or datetime.date.today().isoformat()
            try:
                return {"id": self.measurements.log(date, **values)}
            except (TypeError, ValueError) as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.get("/measurements/changes")
        def measurement_changes():
            return self.statistics.measurement_changes()

        @self.app.delete("/measurements/{entry_id}")
        def delete_measurement(entry_id: int):
            try:
                self.measurements.delete(entry_id)
                return {"status": "deleted"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/profiles/search")
        def search_profiles(query: str, user_id: str = None):
            return self.social.search(query, user_id)

        @self.app.put("/profiles/{user_id}")
        def save_profile(
            user_id: str,
            username: str,
            display_name: str = None,
            bio: str = None,
            is_public: bool = False,
        ):
            try:
                return self.social.save_profile(user_id, username, display_name, bio, is_public)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.get("/profiles/{username}")
        def get_profile(username: str, viewer_id: str = None):
            profile = self.social.get_profile(username, viewer_id)
            if profile is None:
                raise HTTPException(status_code=404, detail="profile not found")
            return {**profile, "stats": self.social.profile_stats(profile["id"])}

        @self.app.post("/friends/requests")
        def send_friend_request(user_id: str, friend_id: str):
            try:
                return {"id": self.social.send_request(user_id, friend_id)}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.post("/friends/{friendship_id}/accept")
        def accept_friend_request(friendship_id: int, user_id: str = None):
            try:
                self.social.accept(friendship_id, user_id)
                return {"status": "accepted"}
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.delete("/friends/{friendship_id}")
        def remove_friend(friendship_id: int):
            try:
                self.social.remove(friendship_id)
                return {"status": "removed"}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/friends/{user_id}")
        def list_friends(user_id: str):
            return self.social.friends(user_id)

        @self.app.get("/friends/{user_id}/pending")
        def list_pending(user_id: str):
            return self.social.pending(user_id)

        @self.app.get("/leaderboard")
        def leaderboard(user_id: str, exercise_id: int):
            return self.social.leaderboard(user_id, exercise_id)

        @self.app.get("/feed/{user_id}")
        def activity_feed(user_id: str, limit: int = 20):
            return self.social.activity_feed(user_id, limit)

        @self.app.get("/shared_routines")
        def list_shared_routines():
            return self.social.public_routines()

        @self.app.post("/shared_routines")
        def share_routine(
            routine_id: int,
            title: str,
            user_id: str = None,
            description: str = None,
            is_public: bool = True,
        ):
            try:
                return {
                    "id": self.social.share_routine(
                        user_id, routine_id, title, description, is_public
                    )
                }
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.post("/shared_routines/{shared_id}/import")
        def import_shared_routine(shared_id: int, user_id: str = None):
            try:
                return {"id": self.social.import_routine(shared_id, user_id)}
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))

        @self.app.get("/settings/general")
        def get_settings():
            return self.settings.all_settings()

        @self.app.post("/settings/general")
        def update_settings(values: Dict = Body(...)):
            try:
                for key, value in values.items():
                    self.settings.set_text(key, str(value))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self.settings.all_settings()

        @self.app.get("/settings/backup")
        def backup_db():
            with open(self.db_path, "rb") as f:
                data = f.read()
            return Response(
                content=data,
                media_type="application/octet-stream",
                headers={"Content-Disposition": "attachment; filename=backup.db"},
            )

        @self.app.post("/settings/restore")
        def restore_db(file: bytes = Body(...)):
            with open(self.db_path, "wb") as f:
                f.write(file)
            logger.info("Database restored from upload")
            return {"status": "restored"}


api = TrainingAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
