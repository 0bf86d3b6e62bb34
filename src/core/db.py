"""SQLite database layer for preference profiles and feedback events.

Profiles carry a version number for optimistic concurrency: a write only
lands if the version it read is still current. Feedback events are stored
before they are applied and marked applied in the same transaction as the
profile write, so an event is consumed exactly once.
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from src.core.errors import ConcurrentUpdateConflict, PersistenceError, ProfileNotFound
from src.core.schemas import FeedbackEvent, PreferenceProfile, Rating

_PROFILES_TABLE = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id         TEXT    PRIMARY KEY,
    version         INTEGER NOT NULL,
    profile_json    TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);
"""

_FEEDBACK_EVENTS_TABLE = """
CREATE TABLE IF NOT EXISTS feedback_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    category        TEXT    NOT NULL,
    rating          TEXT    NOT NULL,
    tags_json       TEXT    NOT NULL DEFAULT '[]',
    notes           TEXT,
    created_at      TEXT    NOT NULL,
    applied_at      TEXT
);
"""

_FEEDBACK_USER_INDEX = """
CREATE INDEX IF NOT EXISTS idx_feedback_user ON feedback_events (user_id, applied_at);
"""


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Surface sqlite failures as PersistenceError."""
    try:
        yield
    except sqlite3.Error as e:
        msg = f"Failed to {action}: {e}"
        raise PersistenceError(msg) from e


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with _store_errors("initialize database"):
        conn = sqlite3.connect(str(path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(_PROFILES_TABLE)
        conn.execute(_FEEDBACK_EVENTS_TABLE)
        conn.execute(_FEEDBACK_USER_INDEX)
        conn.commit()
    return conn


def load_profile(conn: sqlite3.Connection, user_id: str) -> tuple[PreferenceProfile, int]:
    """Return (profile, version) for a user.

    Raises:
        ProfileNotFound: If no profile has been stored for the user.
    """
    with _store_errors(f"load profile for '{user_id}'"):
        row = conn.execute(
            "SELECT profile_json, version FROM profiles WHERE user_id = ?",
            (user_id,),
        ).fetchone()
    if row is None:
        raise ProfileNotFound(user_id)
    return PreferenceProfile.model_validate_json(row["profile_json"]), row["version"]


def save_profile(
    conn: sqlite3.Connection,
    user_id: str,
    profile: PreferenceProfile,
    expected_version: int,
    applied_event_id: int | None = None,
) -> int:
    """Write a profile if the stored version still equals expected_version.

    expected_version 0 means "no profile stored yet". When applied_event_id
    is given, that event is marked applied in the same transaction.

    Returns the new version.

    Raises:
        ConcurrentUpdateConflict: If another writer got there first, or the
            event was already applied.
    """
    new_version = expected_version + 1
    now = datetime.now().isoformat()
    payload = profile.model_dump_json()

    with _store_errors(f"save profile for '{user_id}'"), conn:
        if expected_version == 0:
            try:
                conn.execute(
                    """
                    INSERT INTO profiles (user_id, version, profile_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (user_id, new_version, payload, now),
                )
            except sqlite3.IntegrityError as e:
                raise ConcurrentUpdateConflict(user_id, expected_version) from e
        else:
            cursor = conn.execute(
                """
                UPDATE profiles
                SET version = ?, profile_json = ?, updated_at = ?
                WHERE user_id = ? AND version = ?
                """,
                (new_version, payload, now, user_id, expected_version),
            )
            if cursor.rowcount == 0:
                raise ConcurrentUpdateConflict(user_id, expected_version)

        if applied_event_id is not None:
            cursor = conn.execute(
                "UPDATE feedback_events SET applied_at = ? WHERE id = ? AND applied_at IS NULL",
                (now, applied_event_id),
            )
            if cursor.rowcount == 0:
                raise ConcurrentUpdateConflict(user_id, expected_version)

    return new_version


def insert_feedback_event(conn: sqlite3.Connection, event: FeedbackEvent) -> int:
    """Record a feedback event as pending. Returns the row ID."""
    with _store_errors(f"record feedback for '{event.user_id}'"):
        cursor = conn.execute(
            """
            INSERT INTO feedback_events
                (user_id, category, rating, tags_json, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.user_id,
                event.category,
                event.rating.value,
                json.dumps([t.value for t in event.tags]),
                event.notes,
                event.timestamp.isoformat(),
            ),
        )
        conn.commit()
    return cursor.lastrowid or 0


def is_event_applied(conn: sqlite3.Connection, event_id: int) -> bool:
    with _store_errors(f"check feedback event {event_id}"):
        row = conn.execute(
            "SELECT applied_at FROM feedback_events WHERE id = ?",
            (event_id,),
        ).fetchone()
    return row is not None and row["applied_at"] is not None


def pending_feedback_events(
    conn: sqlite3.Connection,
    user_id: str,
) -> list[tuple[int, FeedbackEvent]]:
    """Return (id, event) pairs not yet applied, oldest first."""
    with _store_errors(f"list pending feedback for '{user_id}'"):
        rows = conn.execute(
            """
            SELECT id, user_id, category, rating, tags_json, notes, created_at
            FROM feedback_events
            WHERE user_id = ? AND applied_at IS NULL
            ORDER BY id
            """,
            (user_id,),
        ).fetchall()
    return [
        (
            row["id"],
            FeedbackEvent(
                user_id=row["user_id"],
                category=row["category"],
                rating=Rating(row["rating"]),
                tags=json.loads(row["tags_json"]),
                notes=row["notes"],
                timestamp=datetime.fromisoformat(row["created_at"]),
            ),
        )
        for row in rows
    ]


def feedback_counts(conn: sqlite3.Connection, user_id: str) -> tuple[int, int]:
    """Return (thumbs_up, thumbs_down) counts over all recorded events."""
    with _store_errors(f"count feedback for '{user_id}'"):
        row = conn.execute(
            """
            SELECT
                COALESCE(SUM(CASE WHEN rating = 'thumbs_up' THEN 1 ELSE 0 END), 0) AS up,
                COALESCE(SUM(CASE WHEN rating = 'thumbs_down' THEN 1 ELSE 0 END), 0) AS down
            FROM feedback_events
            WHERE user_id = ?
            """,
            (user_id,),
        ).fetchone()
    return (row["up"], row["down"])


def category_approval_rates(conn: sqlite3.Connection, user_id: str) -> dict[str, float]:
    """Return the thumbs-up fraction per rated category for a user."""
    with _store_errors(f"aggregate feedback for '{user_id}'"):
        rows = conn.execute(
            """
            SELECT category,
                   SUM(CASE WHEN rating = 'thumbs_up' THEN 1 ELSE 0 END) AS up,
                   COUNT(*) AS total
            FROM feedback_events
            WHERE user_id = ?
            GROUP BY category
            """,
            (user_id,),
        ).fetchall()
    return {row["category"]: row["up"] / row["total"] for row in rows}
