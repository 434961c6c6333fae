import requests
from typing import Optional


class LiftLogClient:
    """Simple REST client for the training API.

    ``session`` may be any object with the ``requests`` call interface, such
    as a ``requests.Session`` or FastAPI's ``TestClient``.
    """

    def __init__(self, base_url: str = "http://localhost:8000", session=None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _get(self, path: str, **params):
        resp = self.session.get(f"{self.base_url}{path}", params=params)
        resp.raise_for_status()
        return resp.json()

    def _post(self, path: str, json=None, **params):
        resp = self.session.post(f"{self.base_url}{path}", params=params, json=json)
        resp.raise_for_status()
        return resp.json()

    def _put(self, path: str, **params):
        resp = self.session.put(f"{self.base_url}{path}", params=params)
        resp.raise_for_status()
        return resp.json()

    def health(self) -> bool:
        return self._get("/health").get("status") == "ok"

    def add_category(self, name: str) -> int:
        return self._post("/categories", name=name)["id"]

    def add_exercise(self, name: str, category_id: Optional[int] = None) -> int:
        params = {"name": name}
        if category_id is not None:
            params["category_id"] = category_id
        return self._post("/exercises", **params)["id"]

    def list_exercises(self):
        return self._get("/exercises")

    def create_routine(self, name: str, exercise_ids: Optional[list[int]] = None) -> int:
        rid = self._post("/routines", name=name)["id"]
        for ex_id in exercise_ids or []:
            self._post(f"/routines/{rid}/exercises", exercise_id=ex_id)
        return rid

    def start_session(self, routine_id: int, user_id: Optional[str] = None) -> dict:
        params = {"routine_id": routine_id}
        if user_id is not None:
            params["user_id"] = user_id
        return self._post("/sessions/start", **params)

    def update_set(
        self,
        token: str,
        index: int,
        field: str,
        value,
        exercise_id: Optional[int] = None,
    ) -> dict:
        params = {"field": field, "value": value}
        if exercise_id is not None:
            params["exercise_id"] = exercise_id
        return self._put(f"/sessions/active/{token}/sets/{index}", **params)

    def finish_session(self, token: str, duration_seconds: Optional[int] = None) -> dict:
        params = {}
        if duration_seconds is not None:
            params["duration_seconds"] = duration_seconds
        return self._post(f"/sessions/active/{token}/finish", **params)

    def overview(self) -> dict:
        return self._get("/stats/overview")

    def streaks(self) -> dict:
        return self._get("/stats/streaks")

    def one_rep_max(self, weight: float, reps: int) -> dict:
        return self._get("/calculator/1rm", weight=weight, reps=reps)

    def rep_table(self, one_rm: float) -> list[dict]:
        return self._get("/calculator/table", one_rm=one_rm)

    def leaderboard(self, user_id: str, exercise_id: int) -> list[dict]:
        return self._get("/leaderboard", user_id=user_id, exercise_id=exercise_id)
