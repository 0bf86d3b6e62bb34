"""Integration test: fetch, rank, feedback and re-rank with a real SQLite store."""

import json
import sqlite3
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from textwrap import dedent
from typing import Any
from unittest.mock import patch

import pytest

from main import main
from src.core.config import CollaborativeConfig, DatabaseConfig, Settings
from src.core.db import init_db
from src.core.errors import PersistenceError
from src.core.schemas import Candidate, Context, Coordinates, FeedbackEvent, Rating
from src.pipeline.orchestrator import export_results_json, recommend
from src.pipeline.profile_manager import ProfileManager
from src.sources.base import CandidateSource

HOME = {"latitude": 40.7128, "longitude": -74.0060}

# ---------------------------------------------------------------------------
# Mock source
# ---------------------------------------------------------------------------


class MockSource(CandidateSource):
    """Returns pre-configured raw records for every fetch."""

    def __init__(self, records: list[dict[str, Any]]) -> None:
        self._records = records

    @property
    def source_id(self) -> str:
        return "mock"

    async def fetch(self, context: Context) -> list[Candidate | Mapping[str, Any]]:
        return list(self._records)


def _record(id: str, category: str, distance: float, **kw: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": id,
        "name": id.title(),
        "category": category,
        "coordinates": HOME,
        "distance_miles": distance,
    }
    record.update(kw)
    return record


RECORDS = [
    _record("cafe", "coffee", 0.5, price_tier=1, rating=4.7),
    _record("museum", "museum", 1.0, price_tier=2, rating=4.2),
    _record("bar", "bars", 0.8, price_tier=3, rating=4.0),
    _record("park", "parks", 2.0, price_tier=0, rating=4.5),
    _record("steakhouse", "dining", 3.0, price_tier=4, sponsored=True),
    {"id": "nowhere", "category": "coffee", "distance_miles": 0.1},
]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(database=DatabaseConfig(path=str(tmp_path / "profiles.db")))


@pytest.fixture
def db(settings: Settings) -> sqlite3.Connection:
    return init_db(settings.database.path)


@pytest.fixture
def manager(db: sqlite3.Connection, settings: Settings) -> ProfileManager:
    return ProfileManager(db, settings.feedback)


def _context() -> Context:
    return Context(
        current_time=datetime(2024, 6, 1, 8, 0),
        user_location=Coordinates(**HOME),
    )


def _ids(outcome: Any) -> list[str]:
    return [r.candidate.id for r in outcome.ranked]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestRecommendationFlow:
    async def test_new_user_gets_ranked_list(
        self, manager: ProfileManager, settings: Settings,
    ) -> None:
        outcome = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        assert len(outcome.ranked) == 5
        assert [r.candidate_id for r in outcome.rejected] == ["nowhere"]
        scores = [r.breakdown.ranking_score for r in outcome.ranked]
        assert scores == sorted(scores, reverse=True)

    async def test_feedback_changes_next_ranking(
        self, manager: ProfileManager, settings: Settings,
    ) -> None:
        manager.submit_feedback(FeedbackEvent(user_id="u1", category="coffee", rating=Rating.THUMBS_UP))
        manager.submit_feedback(
            FeedbackEvent(user_id="u1", category="museum", rating=Rating.THUMBS_DOWN, tags=["boring"]),
        )

        outcome = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        ids = _ids(outcome)
        assert ids[0] == "cafe"
        assert ids[-1] == "museum"
        assert outcome.ranked[0].reason.startswith("Matches your love of coffee")

    async def test_users_do_not_share_profiles(
        self, manager: ProfileManager, settings: Settings,
    ) -> None:
        manager.submit_feedback(
            FeedbackEvent(user_id="u1", category="coffee", rating=Rating.THUMBS_DOWN),
        )
        mine = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        theirs = await recommend("u2", MockSource(RECORDS), manager, _context(), settings)
        assert _ids(mine)[0] != "cafe"
        assert _ids(theirs)[0] == "cafe"

    async def test_store_outage_falls_back_to_default_profile(
        self, manager: ProfileManager, settings: Settings,
    ) -> None:
        baseline = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        with patch.object(
            manager, "get_profile", side_effect=PersistenceError("down"),
        ), patch.object(manager, "approval_rates", side_effect=PersistenceError("down")):
            outcome = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        assert _ids(outcome) == _ids(baseline)

    async def test_collaborative_provider_from_settings(
        self, manager: ProfileManager, tmp_path: Path,
    ) -> None:
        settings = Settings(
            database=DatabaseConfig(path=str(tmp_path / "profiles.db")),
            collaborative=CollaborativeConfig(
                provider="category_approval", options={"approval_rates": {"coffee": 0.9}},
            ),
        )
        outcome = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        by_id = {r.candidate.id: r.breakdown for r in outcome.ranked}
        assert by_id["cafe"].collaborative_score == 9.0
        assert by_id["park"].collaborative_score == 5.0

    async def test_export_json(self, manager: ProfileManager, settings: Settings) -> None:
        outcome = await recommend("u1", MockSource(RECORDS), manager, _context(), settings)
        data = json.loads(export_results_json(outcome))
        assert [row["position"] for row in data["ranked"]] == [1, 2, 3, 4, 5]
        first = data["ranked"][0]
        assert set(first) >= {"id", "reason", "top_component", "confidence", "score"}
        assert first["score"]["final_score"] <= 100
        assert data["rejected"][0]["candidate_id"] == "nowhere"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_config(tmp_path: Path) -> Path:
    cfg = tmp_path / "settings.yaml"
    cfg.write_text(dedent(f"""\
        database:
          path: {tmp_path / "cli.db"}
    """))
    return cfg


class TestCli:
    def test_feedback_then_show_profile(
        self, cli_config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        main([
            "feedback", "--user", "u1", "--category", "coffee", "--rating", "thumbs_up",
            "--tag", "great_value", "--config", str(cli_config),
        ])
        assert "version 1" in capsys.readouterr().out

        main(["show-profile", "--user", "u1", "--config", str(cli_config)])
        profile = json.loads(capsys.readouterr().out)
        assert profile["favorite_categories"] == ["coffee"]
        assert profile["price_sensitivity"] == "low"

    def test_stats(self, cli_config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main([
            "feedback", "--user", "u1", "--category", "bars", "--rating", "thumbs_down",
            "--config", str(cli_config),
        ])
        capsys.readouterr()
        main(["stats", "--user", "u1", "--config", str(cli_config)])
        out = capsys.readouterr().out
        assert "1 total" in out
        assert "0.0%" in out

    def test_rank_with_export(
        self, cli_config: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        candidates = tmp_path / "candidates.json"
        candidates.write_text(json.dumps(RECORDS))
        main([
            "rank", "--user", "u1", "--candidates", str(candidates),
            "--at", "2024-06-01T08:00:00", "--lat", "40.7128", "--lon", "-74.006",
            "--export", "json", "--config", str(cli_config),
        ])
        out = capsys.readouterr().out
        assert "5 recommendations for 'u1' (morning), 1 rejected." in out
        assert '"ranked"' in out

    def test_missing_config_exits(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["stats", "--user", "u1", "--config", str(tmp_path / "missing.yaml")])
        assert exc_info.value.code == 1

    def test_missing_candidates_exits(self, cli_config: Path, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([
                "rank", "--user", "u1", "--candidates", str(tmp_path / "none.json"),
                "--config", str(cli_config),
            ])
        assert exc_info.value.code == 1
