"""Behavioral tests for a full RAG turn against the in-memory fake DB."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from askbrain.core.errors import GenerationError, NotFoundError
from askbrain.core.generation import GenerationResult
from askbrain.core.schemas_rag import RagRequest, RagRequestContext, RagRequestOptions
from tests.fakes.fake_db import fake_db

USER_ID = str(uuid4())
OTHER_USER_ID = str(uuid4())
REFUSAL = "No reliable data for this query in LexyHub at the moment."


def _corpus_row(source_type: str, chunk: str, score: float, scope: str = "global", marketplace=None):
    return {
        "id": str(uuid4()),
        "source_type": source_type,
        "chunk": chunk,
        "combined_score": score,
        "owner_scope": scope,
        "marketplace": marketplace,
        "metadata": {},
    }


def _wedding_corpus():
    return [
        _corpus_row("keyword", "wedding favors", 0.031, "global", "etsy"),
        _corpus_row("keyword", "rustic wedding decor", 0.029, "user", "etsy"),
        _corpus_row("listing", "Personalized wedding sign", 0.025, "team", "etsy"),
        _corpus_row("doc", "Seasonality of wedding niches", 0.02, "global"),
        _corpus_row("alert", "Trademark risk: 'Mr & Mrs'", 0.018, "global", "etsy"),
    ]


def _generation(text: str = "Wedding favors are trending up 14%.") -> GenerationResult:
    return GenerationResult(
        text=text,
        model="claude-haiku-4-5-20251001",
        input_tokens=900,
        output_tokens=120,
        latency_ms=850,
    )


@pytest.fixture(autouse=True)
def reset_fake_db():
    """Reset fake DB before each test."""
    fake_db.reset()


@pytest.fixture
def mock_db_helpers():
    """Route every DB helper used by the pipeline to the fake DB."""
    patches = [
        patch("askbrain.core.rag_pipeline.ensure_thread", side_effect=fake_db.ensure_thread),
        patch("askbrain.core.rag_pipeline.update_thread_title", side_effect=fake_db.update_thread_title),
        patch("askbrain.core.rag_pipeline.update_thread_stats", side_effect=fake_db.update_thread_stats),
        patch("askbrain.core.rag_pipeline.insert_user_message", side_effect=fake_db.insert_user_message),
        patch(
            "askbrain.core.rag_pipeline.insert_assistant_message",
            side_effect=fake_db.insert_assistant_message,
        ),
        patch("askbrain.core.rag_pipeline.load_thread_history", side_effect=fake_db.load_thread_history),
        patch("askbrain.core.rag_pipeline.get_owned_message", side_effect=fake_db.get_owned_message),
        patch("askbrain.core.rag_pipeline.insert_feedback", side_effect=fake_db.insert_feedback),
        patch("askbrain.core.rag_pipeline.log_llm_usage"),
        patch("askbrain.db.corpus.search_corpus", side_effect=fake_db.search_corpus),
        patch("askbrain.db.corpus.fetch_keywords_by_ids", side_effect=fake_db.fetch_keywords_by_ids),
        patch("askbrain.db.prompt_configs.get_system_prompt", return_value=None),
        patch("askbrain.db.prompt_configs.get_capability_prompt", return_value=None),
    ]

    for p in patches:
        p.start()

    yield

    for p in patches:
        p.stop()


@pytest.fixture
def generate():
    with patch(
        "askbrain.core.rag_pipeline.generate_answer",
        new_callable=AsyncMock,
        return_value=_generation(),
    ) as mock_generate:
        yield mock_generate


class TestRagTurn:
    @pytest.mark.asyncio
    async def test_wedding_niche_question_is_answered_with_rag(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        request = RagRequest(
            message="What are the top trending keywords in the wedding niche?",
            context=RagRequestContext(marketplaces=["etsy"]),
        )

        response = await run_rag_turn(USER_ID, request)

        assert response.capability == "market_brief"
        assert response.flags.used_rag is True
        assert response.flags.insufficient_context is False
        assert response.flags.fallback_to_generic is False
        assert 1 <= len(response.sources) <= 12
        assert response.answer == "Wedding favors are trending up 14%."
        assert response.model.id == "claude-haiku-4-5-20251001"
        assert response.model.usage.input_tokens == 900
        generate.assert_awaited_once()

        # User-owned evidence ranks first
        assert response.sources[0].label == "rustic wedding decor"

        thread = fake_db.threads[response.thread_id]
        assert thread["title"] == request.message
        assert thread["message_count"] == 2
        assert thread["last_message_at"] == fake_db.live_messages(response.thread_id)[-1]["created_at"]

        assistant = fake_db.live_messages(response.thread_id)[-1]
        assert assistant["id"] == response.message_id
        assert assistant["flags"] == {
            "usedRag": True,
            "fallbackToGeneric": False,
            "insufficientContext": False,
        }
        assert len(assistant["retrieved_source_ids"]) == len(response.sources)

    @pytest.mark.asyncio
    async def test_references_are_grouped_by_type(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        response = await run_rag_turn(
            USER_ID, RagRequest(message="wedding market overview")
        )

        refs = response.references
        assert len(refs.keywords) == 2
        assert len(refs.listings) == 1
        assert len(refs.alerts) == 1
        assert len(refs.docs) == 1

    @pytest.mark.asyncio
    async def test_empty_corpus_returns_refusal_without_generation(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        response = await run_rag_turn(
            USER_ID, RagRequest(message="What's the demand for left-handed teapots?")
        )

        assert response.answer == REFUSAL
        assert response.flags.insufficient_context is True
        assert response.flags.used_rag is False
        assert response.sources == []
        assert response.model.id == "n/a"
        generate.assert_not_awaited()

        stored = fake_db.live_messages(response.thread_id)
        assert [m["role"] for m in stored] == ["user", "assistant"]
        assert stored[-1]["content"] == REFUSAL
        assert stored[-1]["model_id"] == "n/a"

    @pytest.mark.asyncio
    async def test_search_outage_without_structured_context_refuses(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        with patch("askbrain.db.corpus.search_corpus", side_effect=RuntimeError("rpc down")):
            response = await run_rag_turn(USER_ID, RagRequest(message="wedding niche trends"))

        assert response.answer == REFUSAL
        assert response.flags.fallback_to_generic is True
        assert response.flags.insufficient_context is True
        generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_search_outage_falls_back_to_referenced_keywords(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        keyword_id = uuid4()
        fake_db.keywords[str(keyword_id)] = {
            "id": str(keyword_id),
            "term": "boho wedding",
            "demand_index": 77,
        }

        with patch("askbrain.db.corpus.search_corpus", side_effect=RuntimeError("rpc down")):
            response = await run_rag_turn(
                USER_ID,
                RagRequest(
                    message="Explain the keyword boho wedding",
                    context=RagRequestContext(keyword_ids=[keyword_id]),
                ),
            )

        assert response.flags.fallback_to_generic is True
        assert response.flags.used_rag is True
        assert [s.id for s in response.sources] == [str(keyword_id)]
        assert response.references.keywords == [str(keyword_id)]
        prompt = generate.call_args.args[0]
        assert "Demand: 77" in prompt

    @pytest.mark.asyncio
    async def test_unknown_thread_is_rejected_without_writes(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        with pytest.raises(NotFoundError):
            await run_rag_turn(USER_ID, RagRequest(thread_id=uuid4(), message="hello"))

        assert fake_db.messages == []
        generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_thread_is_rejected(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        thread = fake_db.ensure_thread(OTHER_USER_ID)

        with pytest.raises(NotFoundError):
            await run_rag_turn(USER_ID, RagRequest(thread_id=thread["id"], message="hello"))

    @pytest.mark.asyncio
    async def test_follow_up_turn_carries_history_and_keeps_title(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        first = await run_rag_turn(USER_ID, RagRequest(message="wedding niche overview"))

        second = await run_rag_turn(
            USER_ID,
            RagRequest(thread_id=first.thread_id, message="And which keyword is rising fastest?"),
        )

        assert second.thread_id == first.thread_id
        thread = fake_db.threads[first.thread_id]
        assert thread["title"] == "wedding niche overview"
        assert thread["message_count"] == 4

        prompt = generate.call_args.args[0]
        assert "User: wedding niche overview" in prompt
        assert "Assistant: Wedding favors are trending up 14%." in prompt
        # The current message is the query, not a history line
        assert "User: And which keyword is rising fastest?" not in prompt
        assert "=== CURRENT USER QUERY ===\nAnd which keyword is rising fastest?" in prompt

    @pytest.mark.asyncio
    async def test_soft_deleted_messages_leave_history(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        first = await run_rag_turn(USER_ID, RagRequest(message="first question about the niche"))
        fake_db.delete_message(first.message_id, USER_ID)

        await run_rag_turn(
            USER_ID, RagRequest(thread_id=first.thread_id, message="second question about the niche")
        )

        prompt = generate.call_args.args[0]
        assert "User: first question about the niche" in prompt
        assert "Assistant:" not in prompt
        # Deleted row stays stored
        assert any(m["id"] == first.message_id for m in fake_db.messages)
        assert fake_db.threads[first.thread_id]["message_count"] == 3

    @pytest.mark.asyncio
    async def test_generation_failure_fails_the_turn(self, mock_db_helpers):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()

        with patch(
            "askbrain.core.rag_pipeline.generate_answer",
            new_callable=AsyncMock,
            side_effect=GenerationError("Generation timed out after 45s"),
        ):
            with pytest.raises(GenerationError):
                await run_rag_turn(USER_ID, RagRequest(message="wedding niche overview"))

        assert [m["role"] for m in fake_db.messages] == ["user"]

    @pytest.mark.asyncio
    async def test_capability_override_wins(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        response = await run_rag_turn(
            USER_ID,
            RagRequest(message="wedding niche overview", capability="competitor_intel"),
        )

        assert response.capability == "competitor_intel"
        assert fake_db.messages[0]["capability"] == "competitor_intel"

    @pytest.mark.asyncio
    async def test_options_reach_generation(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        await run_rag_turn(
            USER_ID,
            RagRequest(
                message="wedding niche overview",
                options=RagRequestOptions(max_tokens=512, temperature=0.2),
            ),
        )

        assert generate.call_args.kwargs == {"max_tokens": 512, "temperature": 0.2}

    @pytest.mark.asyncio
    async def test_marketplace_filter_uses_first_marketplace(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = [
            _corpus_row("keyword", "amazon only", 0.05, marketplace="amazon"),
            _corpus_row("keyword", "etsy only", 0.04, marketplace="etsy"),
        ]

        response = await run_rag_turn(
            USER_ID,
            RagRequest(
                message="wedding niche overview",
                context=RagRequestContext(marketplaces=["etsy", "amazon"]),
            ),
        )

        assert [s.label for s in response.sources] == ["etsy only"]


class TestTrainingCapture:
    @pytest.mark.asyncio
    async def test_eligible_turn_is_submitted(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        collector = MagicMock()
        collector.check_eligibility = AsyncMock(return_value=True)

        response = await run_rag_turn(
            USER_ID, RagRequest(message="wedding niche overview"), collector=collector
        )

        collector.submit.assert_called_once()
        sample = collector.submit.call_args.args[0]
        assert sample.message_id == response.message_id
        assert sample.response == response.answer
        assert fake_db.live_messages(response.thread_id)[-1]["training_eligible"] is True

    @pytest.mark.asyncio
    async def test_ineligible_turn_is_not_submitted(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import run_rag_turn

        fake_db.corpus = _wedding_corpus()
        collector = MagicMock()
        collector.check_eligibility = AsyncMock(return_value=False)

        response = await run_rag_turn(
            USER_ID, RagRequest(message="wedding niche overview"), collector=collector
        )

        collector.submit.assert_not_called()
        assert fake_db.live_messages(response.thread_id)[-1]["training_eligible"] is False


class TestFeedback:
    @pytest.mark.asyncio
    async def test_feedback_on_own_message(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import record_feedback, run_rag_turn

        fake_db.corpus = _wedding_corpus()
        response = await run_rag_turn(USER_ID, RagRequest(message="wedding niche overview"))

        await record_feedback(response.message_id, USER_ID, "positive", "useful")

        assert fake_db.feedback[0]["rating"] == "positive"

    @pytest.mark.asyncio
    async def test_feedback_on_foreign_message_is_not_found(self, mock_db_helpers, generate):
        from askbrain.core.rag_pipeline import record_feedback, run_rag_turn

        fake_db.corpus = _wedding_corpus()
        response = await run_rag_turn(USER_ID, RagRequest(message="wedding niche overview"))

        with pytest.raises(NotFoundError):
            await record_feedback(response.message_id, OTHER_USER_ID, "negative")

        assert fake_db.feedback == []
