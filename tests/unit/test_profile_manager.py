"""Tests for ProfileManager: defaults, store-then-apply, retries, replay."""

import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from src.core.config import FeedbackConfig
from src.core.db import init_db, is_event_applied, pending_feedback_events, save_profile
from src.core.errors import ConcurrentUpdateConflict, PersistenceError
from src.core.schemas import FeedbackEvent, PreferenceProfile, Rating, default_profile
from src.pipeline.profile_manager import ProfileManager


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path: Path) -> sqlite3.Connection:
    return init_db(db_path)


def _pm(db: sqlite3.Connection, max_retries: int = 5) -> ProfileManager:
    return ProfileManager(db, FeedbackConfig(max_retries=max_retries))


def _event(
    category: str = "coffee",
    rating: Rating = Rating.THUMBS_UP,
    tags: list[str] | None = None,
    user_id: str = "u1",
) -> FeedbackEvent:
    return FeedbackEvent(user_id=user_id, category=category, rating=rating, tags=tags or [])


# ---------------------------------------------------------------------------
# get_profile
# ---------------------------------------------------------------------------


class TestGetProfile:
    def test_unknown_user_gets_default(self, db: sqlite3.Connection) -> None:
        assert _pm(db).get_profile("new-user") == default_profile()

    def test_returns_stored_profile(self, db: sqlite3.Connection) -> None:
        stored = PreferenceProfile(favorite_categories=("parks",))
        save_profile(db, "u1", stored, 0)
        assert _pm(db).get_profile("u1") == stored

    def test_store_failure_falls_back_to_last_known(self, db: sqlite3.Connection) -> None:
        pm = _pm(db)
        pm.submit_feedback(_event("coffee"))
        with patch(
            "src.pipeline.profile_manager.load_profile",
            side_effect=PersistenceError("disk gone"),
        ):
            profile = pm.get_profile("u1")
        assert profile.favorite_categories == ("coffee",)

    def test_store_failure_without_cache_raises(self, db: sqlite3.Connection) -> None:
        with patch(
            "src.pipeline.profile_manager.load_profile",
            side_effect=PersistenceError("disk gone"),
        ), pytest.raises(PersistenceError):
            _pm(db).get_profile("u1")

    def test_last_known_cache_is_bounded(self, db: sqlite3.Connection) -> None:
        save_profile(db, "u1", PreferenceProfile(favorite_categories=("parks",)), 0)
        save_profile(db, "u2", PreferenceProfile(favorite_categories=("museum",)), 0)
        pm = ProfileManager(db, FeedbackConfig(profile_cache_size=1))
        pm.get_profile("u1")
        pm.get_profile("u2")

        with patch(
            "src.pipeline.profile_manager.load_profile",
            side_effect=PersistenceError("disk gone"),
        ):
            assert pm.get_profile("u2").favorite_categories == ("museum",)
            with pytest.raises(PersistenceError):
                pm.get_profile("u1")


# ---------------------------------------------------------------------------
# submit_feedback
# ---------------------------------------------------------------------------


class TestSubmitFeedback:
    def test_first_feedback_creates_profile(self, db: sqlite3.Connection) -> None:
        receipt = _pm(db).submit_feedback(_event("coffee"))
        assert receipt.applied is True
        assert receipt.version == 1
        assert receipt.profile is not None
        assert receipt.profile.favorite_categories == ("coffee",)
        assert is_event_applied(db, receipt.event_id)

    def test_sequential_feedback_accumulates(self, db: sqlite3.Connection) -> None:
        pm = _pm(db)
        pm.submit_feedback(_event("coffee"))
        receipt = pm.submit_feedback(_event("nightlife", Rating.THUMBS_DOWN, ["too_expensive"]))
        assert receipt.version == 2
        profile = pm.get_profile("u1")
        assert profile.favorite_categories == ("coffee",)
        assert profile.disliked_categories == ("nightlife",)
        assert profile.budget_level == 1

    def test_concurrent_writer_is_retried(self, db: sqlite3.Connection, db_path: Path) -> None:
        """Another connection writes between our read and our write."""
        other = init_db(db_path)
        calls = {"n": 0}

        def racing_save(conn, user_id, profile, expected_version, applied_event_id=None):  # type: ignore[no-untyped-def]
            calls["n"] += 1
            if calls["n"] == 1:
                save_profile(other, user_id, PreferenceProfile(favorite_categories=("museum",)), 0)
            return save_profile(conn, user_id, profile, expected_version, applied_event_id)

        with patch("src.pipeline.profile_manager.save_profile", side_effect=racing_save):
            receipt = _pm(db).submit_feedback(_event("coffee"))

        other.close()
        assert calls["n"] == 2
        assert receipt.applied is True
        assert receipt.version == 2
        assert receipt.profile is not None
        assert receipt.profile.favorite_categories == ("museum", "coffee")

    def test_exhausted_retries_leave_event_pending(self, db: sqlite3.Connection) -> None:
        with patch(
            "src.pipeline.profile_manager.save_profile",
            side_effect=ConcurrentUpdateConflict("u1", 0),
        ) as mock_save:
            receipt = _pm(db, max_retries=3).submit_feedback(_event("coffee"))
        assert mock_save.call_count == 3
        assert receipt.applied is False
        assert receipt.profile is None
        assert [eid for eid, _ in pending_feedback_events(db, "u1")] == [receipt.event_id]

    def test_store_failure_on_apply_leaves_event_pending(self, db: sqlite3.Connection) -> None:
        with patch(
            "src.pipeline.profile_manager.save_profile",
            side_effect=PersistenceError("disk full"),
        ):
            receipt = _pm(db).submit_feedback(_event("coffee"))
        assert receipt.applied is False
        assert len(pending_feedback_events(db, "u1")) == 1

    def test_store_failure_on_record_propagates(self, db: sqlite3.Connection) -> None:
        with patch(
            "src.pipeline.profile_manager.insert_feedback_event",
            side_effect=PersistenceError("disk full"),
        ), pytest.raises(PersistenceError):
            _pm(db).submit_feedback(_event("coffee"))

    def test_event_applied_by_other_writer_not_reapplied(self, db: sqlite3.Connection) -> None:
        pm = _pm(db)

        def apply_elsewhere(conn, user_id, profile, expected_version, applied_event_id=None):  # type: ignore[no-untyped-def]
            save_profile(conn, user_id, profile, expected_version, applied_event_id)
            raise ConcurrentUpdateConflict(user_id, expected_version)

        with patch("src.pipeline.profile_manager.save_profile", side_effect=apply_elsewhere) as m:
            receipt = pm.submit_feedback(_event("coffee"))
        assert m.call_count == 1
        assert receipt.applied is True
        assert receipt.version == 1


# ---------------------------------------------------------------------------
# replay_pending
# ---------------------------------------------------------------------------


class TestReplayPending:
    def test_replay_applies_in_order(self, db: sqlite3.Connection) -> None:
        pm = _pm(db)
        with patch(
            "src.pipeline.profile_manager.save_profile",
            side_effect=PersistenceError("disk full"),
        ):
            pm.submit_feedback(_event("parks"))
            pm.submit_feedback(_event("parks", Rating.THUMBS_DOWN))

        receipts = pm.replay_pending("u1")
        assert [r.applied for r in receipts] == [True, True]
        assert pending_feedback_events(db, "u1") == []
        profile = pm.get_profile("u1")
        assert profile.favorite_categories == ()
        assert profile.disliked_categories == ("parks",)

    def test_replay_nothing_pending(self, db: sqlite3.Connection) -> None:
        assert _pm(db).replay_pending("u1") == []


# ---------------------------------------------------------------------------
# stats / approval_rates
# ---------------------------------------------------------------------------


class TestStats:
    def test_empty(self, db: sqlite3.Connection) -> None:
        stats = _pm(db).stats("u1")
        assert stats.total == 0
        assert stats.satisfaction_rate == 0.0
        assert stats.top_categories == []

    def test_counts_and_top_categories(self, db: sqlite3.Connection) -> None:
        pm = _pm(db)
        for category in ("coffee", "parks", "dining"):
            pm.submit_feedback(_event(category))
        pm.submit_feedback(_event("bars", Rating.THUMBS_DOWN))

        stats = pm.stats("u1")
        assert stats.total == 4
        assert stats.thumbs_up == 3
        assert stats.thumbs_down == 1
        assert stats.satisfaction_rate == 75.0
        assert stats.top_categories == ["dining", "parks", "coffee"]

    def test_approval_rates(self, db: sqlite3.Connection) -> None:
        pm = _pm(db)
        pm.submit_feedback(_event("coffee"))
        pm.submit_feedback(_event("coffee", Rating.THUMBS_DOWN))
        assert pm.approval_rates("u1") == {"coffee": 0.5}
