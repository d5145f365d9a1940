import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from resolution.cache import ConversationStateStore
from resolution.errors import AIResponderError
from resolution.pipeline import ResolutionPipeline
from resolution.store import InMemoryBotConfigStore
from resolution.types import AIReply, BotConfig, KnowledgeItem, KnowledgeVerdict, OperatingHoursSpec, QAEntry

NOON_UTC = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_bot(**overrides) -> BotConfig:
    values = dict(
        name="Helper",
        greeting="Hi there, ask me anything.",
        system_prompt="You are a helpful customer service assistant.",
        escalation_keywords=("human", "manager"),
        qa_database=(
            QAEntry(
                question="What are your business hours?",
                answer="We are open 9 to 5.",
                keywords=("hours", "open"),
            ),
            QAEntry(
                question="Do you ship abroad?",
                answer="Yes, we ship worldwide.",
                keywords=("international", "overseas"),
            ),
        ),
        knowledge_base=(),
        operating_hours=None,
    )
    values.update(overrides)
    return BotConfig(**values)


class FailingResponder:
    def __init__(self, exc: Optional[Exception] = None) -> None:
        self.exc = exc or AIResponderError("model unavailable")
        self.calls: List[str] = []

    async def respond(self, message, conversation_id, bot_config) -> AIReply:
        self.calls.append(message)
        raise self.exc


class StaticResponder:
    def __init__(self, reply: AIReply) -> None:
        self.reply = reply
        self.calls: List[str] = []

    async def respond(self, message, conversation_id, bot_config) -> AIReply:
        self.calls.append(message)
        return self.reply


class SlowResponder:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def respond(self, message, conversation_id, bot_config) -> AIReply:
        await asyncio.sleep(self.delay)
        return AIReply(text="too late")


class FakeSearcher:
    """Knowledge searcher returning a fixed verdict."""

    def __init__(self, verdict: KnowledgeVerdict) -> None:
        self.verdict = verdict
        self.calls: List[str] = []

    def prepare(self, items):
        return list(items)

    async def search(self, message, prepared, bot_config) -> KnowledgeVerdict:
        self.calls.append(message)
        return self.verdict


@pytest.fixture
def bot() -> BotConfig:
    return make_bot()


@pytest.fixture
def kb_item() -> KnowledgeItem:
    return KnowledgeItem(
        id="kb-1",
        name="Warranty Guide",
        content="Our warranty covers manufacturing defects for two years from the date of purchase.",
    )


@pytest.fixture
def business_hours() -> OperatingHoursSpec:
    return OperatingHoursSpec(enabled=True, start="09:00", end="17:00", timezone="UTC")


def make_pipeline(bot_config: BotConfig, **kwargs) -> ResolutionPipeline:
    kwargs.setdefault("clock", lambda: NOON_UTC)
    state_store = kwargs.pop("state_store", None)
    if state_store is None:
        state_store = ConversationStateStore()
    return ResolutionPipeline(
        config_store=InMemoryBotConfigStore({"default": bot_config}),
        state_store=state_store,
        **kwargs,
    )
