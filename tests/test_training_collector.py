"""Tests for the background training data collector."""

from unittest.mock import patch
from uuid import uuid4

import pytest

from askbrain.core.retrieval import RetrievalCandidate
from askbrain.core.training_collector import TrainingCollector, TrainingSample

USER_ID = str(uuid4())


def _sample(message_id: str = "m1") -> TrainingSample:
    return TrainingSample(
        user_id=USER_ID,
        message_id=message_id,
        prompt="=== SYSTEM INSTRUCTIONS ===\n...",
        response="Wedding favors are trending.",
        sources=[RetrievalCandidate("k1", "keyword", "wedding favors", 1.0, "user")],
        capability="market_brief",
        market="etsy",
        niche_terms=["wedding favors"],
    )


@pytest.fixture
def collection_enabled(monkeypatch):
    monkeypatch.setenv("TRAINING_COLLECTION_ENABLED", "true")


class TestEligibility:
    @pytest.mark.asyncio
    async def test_disabled_collection_is_never_eligible(self):
        with patch("askbrain.db.user_preferences.get_lexybrain_preferences") as get_prefs:
            assert await TrainingCollector().check_eligibility(USER_ID) is False

        get_prefs.assert_not_called()

    @pytest.mark.asyncio
    async def test_opted_in_user_is_eligible(self, collection_enabled):
        with patch(
            "askbrain.db.user_preferences.get_lexybrain_preferences",
            return_value={"training_opt_in": True},
        ):
            assert await TrainingCollector().check_eligibility(USER_ID) is True

    @pytest.mark.asyncio
    async def test_default_preferences_are_not_eligible(self, collection_enabled):
        with patch(
            "askbrain.db.user_preferences.get_lexybrain_preferences",
            return_value={"training_opt_in": False},
        ):
            assert await TrainingCollector().check_eligibility(USER_ID) is False

    @pytest.mark.asyncio
    async def test_preference_lookup_failure_is_recorded(self, collection_enabled):
        collector = TrainingCollector()
        with patch(
            "askbrain.db.user_preferences.get_lexybrain_preferences",
            side_effect=RuntimeError("profiles unavailable"),
        ):
            assert await collector.check_eligibility(USER_ID) is False

        errors = collector.stats()["recent_errors"]
        assert errors[0]["stage"] == "eligibility"
        assert "profiles unavailable" in errors[0]["error"]


class TestCollect:
    @pytest.mark.asyncio
    async def test_collect_writes_linked_request_and_response(self):
        collector = TrainingCollector()
        with (
            patch(
                "askbrain.db.training_data.insert_training_request", return_value="req-1"
            ) as insert_request,
            patch("askbrain.db.training_data.insert_training_response") as insert_response,
        ):
            await collector.collect(_sample())

        args = insert_request.call_args.args
        assert args[0] == USER_ID
        assert args[2]["sources"] == [
            {"id": "k1", "type": "keyword", "label": "wedding favors", "score": 1.0}
        ]
        assert args[3:] == ("market_brief", "etsy", ["wedding favors"])
        assert insert_response.call_args.args[0] == "req-1"
        assert collector.processed == 1

    @pytest.mark.asyncio
    async def test_collect_failure_never_raises(self):
        collector = TrainingCollector()
        with patch(
            "askbrain.db.training_data.insert_training_request",
            side_effect=RuntimeError("insert failed"),
        ):
            await collector.collect(_sample())

        stats = collector.stats()
        assert stats["failed"] == 1
        assert stats["processed"] == 0
        assert stats["recent_errors"][0]["stage"] == "persist"
        assert stats["recent_errors"][0]["message_id"] == "m1"


class TestWorker:
    @pytest.mark.asyncio
    async def test_submitted_samples_are_drained_on_stop(self):
        collector = TrainingCollector()
        collector.start()

        with (
            patch("askbrain.db.training_data.insert_training_request", return_value="req-1"),
            patch("askbrain.db.training_data.insert_training_response"),
        ):
            assert collector.submit(_sample("m1")) is True
            assert collector.submit(_sample("m2")) is True
            await collector.stop()

        assert collector.processed == 2
        assert collector.is_running is False

    @pytest.mark.asyncio
    async def test_full_queue_drops_samples(self):
        collector = TrainingCollector(max_queue_size=1)

        with (
            patch("askbrain.db.training_data.insert_training_request", return_value="req-1"),
            patch("askbrain.db.training_data.insert_training_response"),
        ):
            assert collector.submit(_sample("m1")) is True
            assert collector.submit(_sample("m2")) is False
            await collector.stop()

        stats = collector.stats()
        assert stats["dropped"] == 1
        assert stats["processed"] == 1

    @pytest.mark.asyncio
    async def test_submit_starts_worker_lazily(self):
        collector = TrainingCollector()
        assert collector.is_running is False

        with (
            patch("askbrain.db.training_data.insert_training_request", return_value="req-1"),
            patch("askbrain.db.training_data.insert_training_response"),
        ):
            collector.submit(_sample())
            assert collector.is_running is True
            await collector.stop()


def test_stats_filters_errors_by_user():
    collector = TrainingCollector()
    collector._record_error("persist", RuntimeError("db down"), user_id=USER_ID, message_id="m1")
    collector._record_error("persist", RuntimeError("db down"), user_id="someone-else", message_id="m2")

    assert len(collector.stats()["recent_errors"]) == 2
    own = collector.stats(user_id=USER_ID)["recent_errors"]
    assert [e["message_id"] for e in own] == ["m1"]
