"""
Tests for the resolution pipeline: stage ordering, fallbacks and state updates.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from conftest import (
    FailingResponder,
    FakeSearcher,
    SlowResponder,
    StaticResponder,
    make_bot,
    make_pipeline,
)
from resolution.cache import ConversationStateStore
from resolution.knowledge import KnowledgeBaseMatcher
from resolution.types import AIReply, KnowledgeVerdict, OperatingHoursSpec, QAEntry, ResponseSource

pytestmark = pytest.mark.asyncio


class BrokenIntents:
    def classify(self, message):
        raise RuntimeError("classifier exploded")


class BrokenSpecificity:
    def is_specific_question(self, message):
        raise RuntimeError("classifier exploded")


class TestScenarios:
    """End-to-end resolution scenarios."""

    async def test_offline_short_circuits(self, business_hours):
        """Outside operating hours the gate answers before any other stage."""
        responder = StaticResponder(AIReply(text="should not be used"))
        pipeline = make_pipeline(make_bot(operating_hours=business_hours), ai_responder=responder)

        result = await pipeline.resolve(
            "hello", "c1", now=datetime(2024, 1, 15, 3, 0, tzinfo=timezone.utc)
        )

        assert result.is_offline is True
        assert result.source is ResponseSource.OPERATING_HOURS_CHECK
        assert result.confidence == 1.0
        assert result.should_escalate is False
        assert "currently offline" in result.message
        assert responder.calls == []

    async def test_escalation_keyword_after_ai_failure(self, bot):
        """A failed AI call falls back to the escalation keyword check."""
        pipeline = make_pipeline(bot, ai_responder=FailingResponder())

        result = await pipeline.resolve("I want to speak to a human", "c1")

        assert result.source is ResponseSource.ESCALATION_DETECTION
        assert result.should_escalate is True
        assert result.confidence == 0.9

    async def test_exact_question_matches_qa(self, bot):
        """A message equal to a curated question is answered from the Q&A database."""
        pipeline = make_pipeline(bot, ai_responder=FailingResponder())

        result = await pipeline.resolve("What are your business hours?", "c1")

        assert result.source is ResponseSource.QA_DATABASE
        assert result.confidence == 0.85
        assert result.message == "We are open 9 to 5."

    async def test_gibberish_asks_for_clarification(self, bot):
        """A non-specific unmatched message asks the user to rephrase."""
        pipeline = make_pipeline(bot, ai_responder=FailingResponder())

        result = await pipeline.resolve("asdkjasd", "c1")

        assert result.source is ResponseSource.CLARIFICATION_NEEDED
        assert result.confidence == 0.7
        assert result.should_escalate is False

    async def test_specific_unmatched_question_is_honest(self):
        """A specific unmatched question admits the gap and escalates."""
        pipeline = make_pipeline(make_bot(qa_database=()), ai_responder=FailingResponder())

        result = await pipeline.resolve("what is your return policy on item X9921", "c1")

        assert result.source is ResponseSource.HONEST_NO_MATCH
        assert result.should_escalate is True
        assert result.confidence == 0.8
        assert result.knowledge_used is False
        assert result.knowledge_sources == ()


class TestStageOrdering:
    """Tests for the order of the fallback chain."""

    async def test_successful_ai_reply_is_not_filtered(self, bot):
        """Escalation keywords do not override a successful AI reply."""
        responder = StaticResponder(AIReply(text="Sure, a teammate can help.", confidence=0.85))
        pipeline = make_pipeline(bot, ai_responder=responder)

        result = await pipeline.resolve("can a human help me?", "c1")

        assert result.source is ResponseSource.AI
        assert result.message == "Sure, a teammate can help."
        assert result.confidence == 0.85

    async def test_ai_degraded_reply_is_reported(self, bot):
        responder = StaticResponder(AIReply(text="Please try again later.", confidence=0.5, fallback=True))
        pipeline = make_pipeline(bot, ai_responder=responder)

        result = await pipeline.resolve("hello", "c1")

        assert result.source is ResponseSource.AI_FALLBACK

    async def test_ai_reply_with_sources_marks_knowledge_used(self, bot):
        reply = AIReply(text="Two years.", confidence=0.95, knowledge_sources=("Warranty Guide",))
        pipeline = make_pipeline(bot, ai_responder=StaticResponder(reply))

        result = await pipeline.resolve("how long is the warranty", "c1")

        assert result.knowledge_used is True
        assert result.knowledge_sources == ("Warranty Guide",)

    async def test_escalation_precedes_qa(self):
        """Escalation keywords win over a Q&A match in the same message."""
        pipeline = make_pipeline(make_bot(), ai_responder=FailingResponder())

        result = await pipeline.resolve("what are your business hours? let me talk to a manager", "c1")

        assert result.source is ResponseSource.ESCALATION_DETECTION

    async def test_escalation_precedes_knowledge_base(self, kb_item):
        verdict = KnowledgeVerdict(knowledge_used=True, message="From docs", confidence=0.7,
                                   knowledge_sources=("Warranty Guide",))
        searcher = FakeSearcher(verdict)
        pipeline = make_pipeline(
            make_bot(knowledge_base=(kb_item,)),
            ai_responder=FailingResponder(),
            knowledge=KnowledgeBaseMatcher(searcher),
        )

        result = await pipeline.resolve("warranty question for a human", "c1")

        assert result.source is ResponseSource.ESCALATION_DETECTION
        assert searcher.calls == []

    async def test_qa_precedes_knowledge_base(self, kb_item):
        searcher = FakeSearcher(KnowledgeVerdict(knowledge_used=True, message="From docs", confidence=0.7))
        pipeline = make_pipeline(
            make_bot(knowledge_base=(kb_item,)),
            knowledge=KnowledgeBaseMatcher(searcher),
        )

        result = await pipeline.resolve("are you open on sundays", "c1")

        assert result.source is ResponseSource.QA_DATABASE
        assert result.confidence == 0.75
        assert searcher.calls == []

    async def test_knowledge_base_answer(self, kb_item):
        verdict = KnowledgeVerdict(knowledge_used=True, message="Based on our documentation (Warranty Guide): ...",
                                   confidence=0.65, knowledge_sources=("Warranty Guide",))
        pipeline = make_pipeline(
            make_bot(qa_database=(), knowledge_base=(kb_item,)),
            knowledge=KnowledgeBaseMatcher(FakeSearcher(verdict)),
        )

        result = await pipeline.resolve("tell me about the warranty", "c1")

        assert result.source is ResponseSource.KNOWLEDGE_BASE
        assert result.confidence == 0.65
        assert result.knowledge_used is True
        assert result.knowledge_sources == ("Warranty Guide",)

    async def test_knowledge_miss_falls_through_without_sources(self, kb_item):
        pipeline = make_pipeline(
            make_bot(qa_database=(), knowledge_base=(kb_item,)),
            knowledge=KnowledgeBaseMatcher(FakeSearcher(KnowledgeVerdict(knowledge_used=False))),
        )

        result = await pipeline.resolve("what about refunds?", "c1")

        assert result.source is ResponseSource.HONEST_NO_MATCH
        assert result.knowledge_used is False
        assert result.knowledge_sources == ()

    async def test_disabled_qa_entry_never_matches(self):
        entry = QAEntry(question="What are your business hours?", answer="hidden",
                        keywords=("hours",), enabled=False)
        pipeline = make_pipeline(make_bot(qa_database=(entry,)))

        result = await pipeline.resolve("What are your business hours?", "c1")

        assert result.source is not ResponseSource.QA_DATABASE
        assert result.message != "hidden"

    async def test_no_responder_goes_straight_to_fallback(self, bot):
        pipeline = make_pipeline(bot)

        result = await pipeline.resolve("What are your business hours?", "c1")

        assert result.source is ResponseSource.QA_DATABASE


class TestFailures:
    """Tests for timeouts and collaborator failures."""

    async def test_ai_timeout_uses_fallback(self, bot):
        pipeline = make_pipeline(bot, ai_responder=SlowResponder(1.0), ai_timeout=0.01)

        result = await pipeline.resolve("What are your business hours?", "c1")

        assert result.source is ResponseSource.QA_DATABASE

    async def test_empty_ai_reply_uses_fallback(self, bot):
        pipeline = make_pipeline(bot, ai_responder=StaticResponder(AIReply(text="   ")))

        result = await pipeline.resolve("asdkjasd", "c1")

        assert result.source is ResponseSource.CLARIFICATION_NEEDED

    async def test_fallback_chain_failure_returns_emergency(self, bot):
        pipeline = make_pipeline(bot, specificity=BrokenSpecificity())

        result = await pipeline.resolve("asdkjasd", "c1")

        assert result.source is ResponseSource.EMERGENCY_FALLBACK
        assert result.confidence == 0.1
        assert result.should_escalate is True

    async def test_classifier_failure_propagates(self, bot):
        pipeline = make_pipeline(bot, intents=BrokenIntents())

        with pytest.raises(RuntimeError):
            await pipeline.resolve("hello", "c1")


class TestConversationState:
    """Tests for per-conversation bookkeeping."""

    async def test_empty_store_passed_in_is_used(self, bot):
        store = ConversationStateStore()
        pipeline = make_pipeline(bot, state_store=store)

        await pipeline.resolve("hello", "c1")

        assert pipeline.state_store is store
        assert len(store) == 1

    async def test_state_records_each_message(self, bot):
        store = ConversationStateStore()
        pipeline = make_pipeline(bot, state_store=store)

        await pipeline.resolve("hello", "c1")
        await pipeline.resolve("I want to talk to a human agent", "c1")

        state = store.get("c1")
        assert state.message_count == 2
        assert state.intent_history == ["greeting", "escalation"]
        assert state.escalation_attempts == 1
        assert state.last_source == "escalation_detection"

    async def test_concurrent_messages_are_all_counted(self, bot):
        store = ConversationStateStore()
        pipeline = make_pipeline(bot, state_store=store)

        await asyncio.gather(*(pipeline.resolve(f"message {i}", "shared") for i in range(25)))

        assert store.get("shared").message_count == 25

    async def test_qa_match_does_not_touch_state(self, bot):
        store = ConversationStateStore()
        pipeline = make_pipeline(bot, state_store=store)

        result = await pipeline.resolve_fallback_only("What are your business hours?")

        assert result.source is ResponseSource.QA_DATABASE
        assert len(store) == 0


class TestConversationStart:
    """Tests for greeting a new conversation."""

    async def test_online_greeting(self, bot):
        store = ConversationStateStore()
        pipeline = make_pipeline(bot, state_store=store)

        start = await pipeline.start_conversation("c9")

        assert start.greeting == "Hi there, ask me anything."
        assert start.is_offline is False
        assert start.next_opening is None
        assert store.get("c9") is not None

    async def test_generates_conversation_id(self, bot):
        start = await make_pipeline(bot).start_conversation(None)

        assert start.conversation_id.startswith("conv-")

    async def test_offline_greeting_has_next_opening(self, business_hours):
        pipeline = make_pipeline(make_bot(operating_hours=business_hours))

        start = await pipeline.start_conversation(
            "c1", now=datetime(2024, 1, 15, 18, 0, tzinfo=timezone.utc)
        )

        assert start.is_offline is True
        assert start.next_opening["datetime"] == "2024-01-16T09:00:00+00:00"
        assert start.operating_hours == {"enabled": True, "start": "9:00 AM", "end": "5:00 PM", "timezone": "UTC"}

    async def test_hours_status(self, business_hours):
        pipeline = make_pipeline(make_bot(operating_hours=business_hours))

        status = await pipeline.hours_status(now=datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc))

        assert status.is_online is True
        assert status.next_opening is None
        assert status.current_time == "2024-01-15T10:00:00+00:00"
