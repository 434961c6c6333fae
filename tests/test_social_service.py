import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    ExerciseRepository,
    FriendshipRepository,
    ProfileRepository,
    RoutineRepository,
    SessionRepository,
    SetLogRepository,
    SharedRoutineRepository,
)
from models import LoggedSet
from social_service import SocialService, normalize_username


@pytest.fixture
def social(tmp_path):
    db_file = str(tmp_path / "social.db")
    service = SocialService(
        ProfileRepository(db_file),
        FriendshipRepository(db_file),
        SessionRepository(db_file),
        SetLogRepository(db_file),
        RoutineRepository(db_file),
        SharedRoutineRepository(db_file),
    )
    service.save_profile("u1", "Alice", "Alice A.", is_public=True)
    service.save_profile("u2", "bob", "Bob B.", is_public=True)
    service.save_profile("u3", "carol", "Carol C.", is_public=False)
    service.bench = ExerciseRepository(db_file).add("Bench Press")
    return service


def _log(service, user_id, weight, when):
    sid = service.sessions.create(None, user_id=user_id, created_at=when, completed_at=when)
    service.sets.add(
        LoggedSet(session_id=sid, exercise_id=service.bench, reps=5, weight_kg=weight)
    )
    return sid


def test_normalize_username():
    assert normalize_username(" Big-Lifter_99! ") == "biglifter_99"
    assert normalize_username(None) == ""


def test_profiles(social):
    assert social.profiles.fetch("u1")["username"] == "alice"
    with pytest.raises(ValueError):
        social.save_profile("u4", "ALICE")
    with pytest.raises(ValueError):
        social.save_profile("u4", "!!!")
    social.save_profile("u1", "alice", "Renamed", is_public=True)
    assert social.get_profile("Alice")["display_name"] == "Renamed"


def test_private_profile_visibility(social):
    assert social.get_profile("carol") is None
    assert social.get_profile("carol", viewer_id="u3")["id"] == "u3"
    assert social.get_profile("nobody") is None


def test_search(social):
    assert social.search("a") == []
    assert [p["id"] for p in social.search("al")] == ["u1"]
    assert social.search("al", user_id="u1") == []


def test_friend_requests(social):
    fid = social.send_request("u1", "u2")
    with pytest.raises(ValueError):
        social.send_request("u2", "u1")
    with pytest.raises(ValueError):
        social.send_request("u1", "u1")

    pending_for_bob = social.pending("u2")
    assert pending_for_bob[0]["incoming"]
    assert pending_for_bob[0]["username"] == "alice"
    assert not social.pending("u1")[0]["incoming"]
    assert social.friend_ids("u1") == []

    with pytest.raises(ValueError):
        social.accept(fid, user_id="u1")
    social.accept(fid, user_id="u2")
    assert social.friend_ids("u1") == ["u2"]
    assert social.friend_ids("u2") == ["u1"]
    assert social.friends("u1")[0]["display_name"] == "Bob B."

    social.remove(fid)
    assert social.friends("u1") == []


def test_leaderboard(social):
    _log(social, "u1", 100, "2024-01-01T10:00:00+00:00")
    _log(social, "u2", 120, "2024-01-02T10:00:00+00:00")
    _log(social, "u2", 110, "2024-01-03T10:00:00+00:00")
    _log(social, "u3", 200, "2024-01-03T10:00:00+00:00")

    board = social.leaderboard("u1", social.bench)
    assert [(r["user_id"], r["pr"]) for r in board] == [("u1", 100)]

    social.accept(social.send_request("u1", "u2"))
    board = social.leaderboard("u1", social.bench)
    assert [(r["rank"], r["username"], r["pr"], r["is_me"]) for r in board] == [
        (1, "bob", 120, False),
        (2, "alice", 100, True),
    ]


def test_activity_feed(social):
    _log(social, "u1", 100, "2024-01-01T10:00:00+00:00")
    _log(social, "u2", 120, "2024-01-02T10:00:00+00:00")
    social.sessions.create(None, user_id="u2")
    assert [f["user_id"] for f in social.activity_feed("u1")] == ["u1"]

    social.accept(social.send_request("u2", "u1"))
    feed = social.activity_feed("u1")
    assert [f["username"] for f in feed] == ["bob", "alice"]
    assert feed[0]["volume"] == 600
    assert feed[0]["set_count"] == 1
    assert feed[0]["routine"] == "Workout"
    assert len(social.activity_feed("u1", limit=1)) == 1


def test_profile_stats(social):
    _log(social, "u1", 100, "2024-01-01T10:00:00+00:00")
    _log(social, "u1", 105, "2024-01-04T10:00:00+00:00")
    stats = social.profile_stats("u1")
    assert stats["sessions"] == 2
    assert stats["volume"] == 1025
    assert stats["prs"] == [{"name": "Bench Press", "weight": 105}]


def test_share_and_import_routine(social):
    routine = social.routines.create("Push Day", "u1")
    social.routines.set_exercises(routine, [social.bench])
    shared = social.share_routine("u1", routine, "Alice's Push", "Heavy pressing")

    public = social.public_routines()
    assert public[0]["username"] == "alice"
    assert public[0]["exercises"] == [{"id": social.bench, "name": "Bench Press"}]

    new_id = social.import_routine(shared, user_id="u2")
    assert social.routines.fetch_detail(new_id)[0] == "Alice's Push (imported)"
    assert [e[0] for e in social.routines.fetch_exercises(new_id)] == [social.bench]
    assert social.shared.fetch_detail(shared)["import_count"] == 1

    with pytest.raises(ValueError):
        social.import_routine(999)
