"""Profile manager: durable feedback intake and optimistic profile updates.

Feedback is stored before it is applied (store-then-apply). Applying runs a
read-modify-write loop against the profile version; a lost race re-reads
and retries. An event that cannot be applied stays pending for replay and
is never discarded.
"""

import logging
import sqlite3
from collections import OrderedDict

from src.core.config import FeedbackConfig
from src.core.db import (
    category_approval_rates,
    feedback_counts,
    insert_feedback_event,
    is_event_applied,
    load_profile,
    pending_feedback_events,
    save_profile,
)
from src.core.errors import ConcurrentUpdateConflict, PersistenceError, ProfileNotFound
from src.core.schemas import (
    FeedbackEvent,
    FeedbackReceipt,
    FeedbackStats,
    PreferenceProfile,
    default_profile,
)
from src.pipeline.feedback import apply_feedback

logger = logging.getLogger(__name__)


class ProfileManager:
    """Reads profiles and folds feedback into them for any number of users.

    Usage::

        pm = ProfileManager(conn, FeedbackConfig(max_retries=5))
        profile = pm.get_profile("user-1")
        receipt = pm.submit_feedback(event)
        if not receipt.applied:
            ...  # event is stored; pm.replay_pending("user-1") later
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: FeedbackConfig | None = None,
    ) -> None:
        self._conn = conn
        self._config = config or FeedbackConfig()
        # Bounded LRU of the last good profile per user
        self._last_known: OrderedDict[str, PreferenceProfile] = OrderedDict()

    def get_profile(self, user_id: str) -> PreferenceProfile:
        """Return the stored profile, or the default profile if none exists.

        If the store fails, the last profile successfully read for this user
        is returned instead.

        Raises:
            PersistenceError: If the store fails and nothing was read before.
        """
        try:
            profile, _ = load_profile(self._conn, user_id)
        except ProfileNotFound:
            logger.debug("No profile for '%s' - using defaults", user_id)
            return default_profile()
        except PersistenceError:
            cached = self._last_known.get(user_id)
            if cached is None:
                raise
            logger.warning("Profile store unavailable for '%s' - using last known profile", user_id)
            return cached
        self._remember(user_id, profile)
        return profile

    def submit_feedback(self, event: FeedbackEvent) -> FeedbackReceipt:
        """Store a feedback event, then apply it to the user's profile.

        Raises:
            PersistenceError: If the event itself could not be stored. The
                caller still owns the event and must retry.
        """
        event_id = insert_feedback_event(self._conn, event)
        logger.info(
            "Recorded %s for '%s' on '%s' (event %d)",
            event.rating.value, event.user_id, event.category, event_id,
        )
        try:
            return self._apply_with_retry(event_id, event)
        except (PersistenceError, ConcurrentUpdateConflict):
            logger.warning(
                "Feedback event %d for '%s' left pending for replay",
                event_id, event.user_id, exc_info=True,
            )
            return FeedbackReceipt(event_id=event_id, applied=False)

    def replay_pending(self, user_id: str) -> list[FeedbackReceipt]:
        """Apply every stored-but-unapplied event for a user, oldest first."""
        pending = pending_feedback_events(self._conn, user_id)
        if pending:
            logger.info("Replaying %d pending feedback events for '%s'", len(pending), user_id)
        return [self._apply_with_retry(event_id, event) for event_id, event in pending]

    def stats(self, user_id: str) -> FeedbackStats:
        """Summarize a user's feedback history."""
        thumbs_up, thumbs_down = feedback_counts(self._conn, user_id)
        total = thumbs_up + thumbs_down
        profile = self.get_profile(user_id)
        return FeedbackStats(
            total=total,
            thumbs_up=thumbs_up,
            thumbs_down=thumbs_down,
            satisfaction_rate=round(thumbs_up / total * 100, 1) if total else 0.0,
            top_categories=list(reversed(profile.favorite_categories))[:5],
        )

    def approval_rates(self, user_id: str) -> dict[str, float]:
        """Thumbs-up fraction per category, used as the historical rating input."""
        return category_approval_rates(self._conn, user_id)

    def _apply_with_retry(self, event_id: int, event: FeedbackEvent) -> FeedbackReceipt:
        user_id = event.user_id
        version = 0
        for attempt in range(1, self._config.max_retries + 1):
            profile, version = self._load_versioned(user_id)
            updated = apply_feedback(profile, event)
            try:
                new_version = save_profile(
                    self._conn, user_id, updated, version, applied_event_id=event_id,
                )
            except ConcurrentUpdateConflict:
                if is_event_applied(self._conn, event_id):
                    logger.info("Feedback event %d was applied by another writer", event_id)
                    current, current_version = self._load_versioned(user_id)
                    return FeedbackReceipt(
                        event_id=event_id, applied=True, profile=current, version=current_version,
                    )
                logger.debug(
                    "Version conflict for '%s' (attempt %d/%d) - retrying",
                    user_id, attempt, self._config.max_retries,
                )
                continue

            self._remember(user_id, updated)
            logger.debug("Profile for '%s' now at version %d", user_id, new_version)
            return FeedbackReceipt(
                event_id=event_id, applied=True, profile=updated, version=new_version,
            )

        raise ConcurrentUpdateConflict(user_id, version)

    def _remember(self, user_id: str, profile: PreferenceProfile) -> None:
        self._last_known[user_id] = profile
        self._last_known.move_to_end(user_id)
        while len(self._last_known) > self._config.profile_cache_size:
            self._last_known.popitem(last=False)

    def _load_versioned(self, user_id: str) -> tuple[PreferenceProfile, int]:
        try:
            return load_profile(self._conn, user_id)
        except ProfileNotFound:
            return default_profile(), 0
