from __future__ import annotations
import logging
import re
import sqlite3
from typing import Dict, List, Optional

from db import (
    FriendshipRepository,
    ProfileRepository,
    RoutineRepository,
    SessionRepository,
    SetLogRepository,
    SharedRoutineRepository,
)
from tools import MathTools, RecordTools

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
PENDING = "pending"
ANONYMOUS = "user"


def normalize_username(name: str | None) -> str:
    """Lowercase ``name`` and drop everything outside ``[a-z0-9_]``."""
    return re.sub(r"[^a-z0-9_]", "", (name or "").lower())


class SocialService:
    """Profiles, friendships, leaderboards and routine sharing."""

    def __init__(
        self,
        profile_repo: ProfileRepository,
        friendship_repo: FriendshipRepository,
        session_repo: SessionRepository,
        set_repo: SetLogRepository,
        routine_repo: RoutineRepository | None = None,
        shared_repo: SharedRoutineRepository | None = None,
    ) -> None:
        self.profiles = profile_repo
        self.friendships = friendship_repo
        self.sessions = session_repo
        self.sets = set_repo
        self.routines = routine_repo
        self.shared = shared_repo

    # profiles

    def save_profile(
        self,
        user_id: str,
        username: str,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
        is_public: bool = False,
    ) -> Dict:
        name = normalize_username(username)
        if not name:
            raise ValueError("username required")
        existing = self.profiles.fetch_by_username(name)
        if existing is not None and existing["id"] != user_id:
            raise ValueError("username already taken")
        self.profiles.upsert(user_id, name, display_name, bio, is_public)
        return self.profiles.fetch(user_id)

    def get_profile(self, username: str, viewer_id: Optional[str] = None) -> Optional[Dict]:
        """Return a profile by username; private ones only to their owner."""
        profile = self.profiles.fetch_by_username(normalize_username(username))
        if profile is None:
            return None
        if not profile["is_public"] and profile["id"] != viewer_id:
            return None
        return profile

    def profile_stats(self, user_id: str) -> Dict:
        sessions = self.sessions.fetch_all_sessions(user_ids=[user_id])
        history = self.sets.fetch_history(user_ids=[user_id])
        best: Dict[str, float] = {}
        for row in history:
            best[row["exercise"]] = max(best.get(row["exercise"], 0.0), row["weight_kg"])
        prs = sorted(
            ({"name": n, "weight": w} for n, w in best.items()),
            key=lambda r: r["weight"],
            reverse=True,
        )[:5]
        return {"sessions": len(sessions), "volume": MathTools.volume(history), "prs": prs}

    def search(self, query: str, user_id: Optional[str] = None) -> List[Dict]:
        query = normalize_username(query)
        if len(query) < 2:
            return []
        return [p for p in self.profiles.search(query) if p["id"] != user_id]

    # friendships

    def send_request(self, user_id: str, friend_id: str) -> int:
        if user_id == friend_id:
            raise ValueError("cannot befriend yourself")
        if self.friendships.find(user_id, friend_id) is not None:
            raise ValueError("friendship already exists")
        return self.friendships.add(user_id, friend_id)

    def accept(self, friendship_id: int, user_id: Optional[str] = None) -> None:
        _fid, _sender, recipient, status = self.friendships.fetch_detail(friendship_id)
        if user_id is not None and recipient != user_id:
            raise ValueError("only the recipient can accept")
        if status == ACCEPTED:
            return
        self.friendships.set_status(friendship_id, ACCEPTED)

    def remove(self, friendship_id: int) -> None:
        self.friendships.delete(friendship_id)

    def friend_ids(self, user_id: str) -> List[str]:
        ids = []
        for _fid, sender, recipient, _status in self.friendships.fetch_for_user(
            user_id, ACCEPTED
        ):
            other = recipient if sender == user_id else sender
            if other not in ids:
                ids.append(other)
        return ids

    def _with_profiles(self, rows: List[tuple], user_id: str) -> List[Dict]:
        others = [r[2] if r[1] == user_id else r[1] for r in rows]
        profiles = self.profiles.fetch_many(others)
        result = []
        for (fid, sender, recipient, status), other in zip(rows, others):
            profile = profiles.get(other) or {}
            result.append(
                {
                    "friendship_id": fid,
                    "user_id": other,
                    "username": profile.get("username") or ANONYMOUS,
                    "display_name": profile.get("display_name"),
                    "status": status,
                    "incoming": recipient == user_id,
                }
            )
        return result

    def friends(self, user_id: str) -> List[Dict]:
        return self._with_profiles(self.friendships.fetch_for_user(user_id, ACCEPTED), user_id)

    def pending(self, user_id: str) -> List[Dict]:
        """Pending requests in both directions, flagged ``incoming`` when received."""
        return self._with_profiles(self.friendships.fetch_for_user(user_id, PENDING), user_id)

    # leaderboards and feed

    def leaderboard(self, user_id: str, exercise_id: int) -> List[Dict]:
        """Rank the user and accepted friends by their heaviest lift."""
        user_ids = [user_id] + self.friend_ids(user_id)
        try:
            history = self.sets.fetch_history(exercise_id=exercise_id, user_ids=user_ids)
        except sqlite3.Error:
            logger.exception("Error fetching leaderboard for exercise %s", exercise_id)
            return []
        best: Dict[str, float] = {}
        for row in history:
            uid = row["user_id"]
            best[uid] = max(best.get(uid, 0.0), row["weight_kg"])
        profiles = self.profiles.fetch_many(list(best))
        board = sorted(best.items(), key=lambda kv: kv[1], reverse=True)
        return [
            {
                "rank": rank,
                "user_id": uid,
                "username": (profiles.get(uid) or {}).get("username") or ANONYMOUS,
                "display_name": (profiles.get(uid) or {}).get("display_name"),
                "pr": pr,
                "is_me": uid == user_id,
            }
            for rank, (uid, pr) in enumerate(board, start=1)
        ]

    def activity_feed(self, user_id: str, limit: int = 20) -> List[Dict]:
        """Recent completed sessions of the user and accepted friends."""
        user_ids = [user_id] + self.friend_ids(user_id)
        try:
            sessions = [
                s
                for s in self.sessions.fetch_all_sessions(user_ids=user_ids)
                if s["completed_at"]
            ]
            sessions.sort(key=lambda s: s["completed_at"], reverse=True)
            sessions = sessions[:limit]
            history = self.sets.fetch_history(session_ids=[s["id"] for s in sessions])
        except sqlite3.Error:
            logger.exception("Error fetching activity feed")
            return []
        by_session: Dict[int, List[Dict]] = {}
        for row in history:
            by_session.setdefault(row["session_id"], []).append(row)
        profiles = self.profiles.fetch_many(user_ids)

        feed = []
        for s in sessions:
            logs = by_session.get(s["id"], [])
            profile = profiles.get(s["user_id"]) or {}
            feed.append(
                {
                    "session_id": s["id"],
                    "user_id": s["user_id"],
                    "username": profile.get("username") or ANONYMOUS,
                    "date": s["completed_at"],
                    "routine": s["routine_name"] or "Workout",
                    "volume": MathTools.volume(logs),
                    "exercise_count": len({r["exercise_id"] for r in logs}),
                    "set_count": len(logs),
                    "max_weight": RecordTools.personal_record(logs),
                }
            )
        return feed

    # shared routines

    def _require_sharing(self) -> None:
        if self.routines is None or self.shared is None:
            raise ValueError("routine sharing not configured")

    def share_routine(
        self,
        user_id: Optional[str],
        routine_id: int,
        title: str,
        description: Optional[str] = None,
        is_public: bool = True,
    ) -> int:
        self._require_sharing()
        return self.shared.add(routine_id, user_id, title, description, is_public)

    def public_routines(self) -> List[Dict]:
        self._require_sharing()
        result = []
        for item in self.shared.fetch_public():
            item["exercises"] = [
                {"id": ex_id, "name": name}
                for ex_id, name, _cat, _pos in self.routines.fetch_exercises(item["routine_id"])
            ]
            result.append(item)
        return result

    def import_routine(self, shared_id: int, user_id: Optional[str] = None) -> int:
        """Copy a shared routine with its exercise order into a new routine."""
        self._require_sharing()
        shared = self.shared.fetch_detail(shared_id)
        self.routines.fetch_detail(shared["routine_id"])
        exercise_ids = [
            ex_id for ex_id, _name, _cat, _pos in self.routines.fetch_exercises(shared["routine_id"])
        ]
        new_id = self.routines.create(f"{shared['title']} (imported)", user_id)
        self.routines.set_exercises(new_id, exercise_ids)
        self.shared.increment_imports(shared_id)
        logger.info("Imported shared routine %s as routine %s", shared_id, new_id)
        return new_id
