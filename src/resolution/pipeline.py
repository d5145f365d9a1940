import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .answerer import (
    compose_ai,
    compose_emergency,
    compose_escalation,
    compose_honest_fallback,
    compose_knowledge,
    compose_offline,
    compose_qa,
)
from .cache import ConversationStateStore
from .gate import describe_hours, describe_next_opening, is_online, offline_message
from .guardrails import detect_escalation
from .config import ServiceSettings
from .knowledge import KnowledgeBaseMatcher, LexicalKnowledgeBase
from .llm import AIResponder, LLMResponder, LocalQwenLLM
from .qa import match_qa
from .store import BotConfigStore, FileBotConfigStore
from .text import IntentClassifier, KeywordIntentClassifier, KeywordSpecificityClassifier, SpecificityClassifier
from .types import BotConfig, ResolutionResult

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConversationStart:
    conversation_id: str
    greeting: str
    bot_name: str
    is_offline: bool
    next_opening: Optional[Dict[str, str]] = None
    operating_hours: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "greeting": self.greeting,
            "botName": self.bot_name,
            "isOffline": self.is_offline,
            "nextOpening": self.next_opening,
            "operatingHours": self.operating_hours,
        }


@dataclass(frozen=True)
class HoursStatus:
    is_online: bool
    operating_hours: Optional[Dict[str, Any]]
    next_opening: Optional[Dict[str, str]]
    current_time: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isOnline": self.is_online,
            "operatingHours": self.operating_hours,
            "nextOpening": self.next_opening,
            "currentTime": self.current_time,
        }


class ResolutionPipeline:
    """Turns one inbound message into exactly one ResolutionResult.

    Order: operating-hours gate, then the AI responder. Only an AI error (or no
    responder at all) sends the message down the fallback chain: escalation
    keywords, curated Q&A, knowledge base, honest fallback. A successful AI reply
    is returned as-is.
    """

    def __init__(
        self,
        config_store: BotConfigStore,
        state_store: ConversationStateStore,
        ai_responder: Optional[AIResponder] = None,
        knowledge: Optional[KnowledgeBaseMatcher] = None,
        specificity: Optional[SpecificityClassifier] = None,
        intents: Optional[IntentClassifier] = None,
        ai_timeout: float = 8.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config_store = config_store
        self.state_store = state_store
        self.ai_responder = ai_responder
        self.knowledge = knowledge
        self.specificity = specificity or KeywordSpecificityClassifier()
        self.intents = intents or KeywordIntentClassifier()
        self.ai_timeout = ai_timeout
        self.clock = clock

    async def resolve(
        self,
        message: str,
        conversation_id: str,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        bot_config = await self.config_store.get(organization_id)
        now = now or self.clock()

        result = self._gate(bot_config, now)
        if result is None:
            result = await self._attempt_ai(message, conversation_id, bot_config)
        if result is None:
            result = await self._run_fallback(message, bot_config)

        logger.info("Resolved %s via %s (confidence=%.2f, escalate=%s)",
                    conversation_id, result.source.value, result.confidence, result.should_escalate)
        await self._record(conversation_id, message, result)
        return result

    async def resolve_fallback_only(
        self,
        message: str,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        bot_config = await self.config_store.get(organization_id)
        result = self._gate(bot_config, now or self.clock())
        if result is not None:
            return result
        return await self._run_fallback(message, bot_config)

    async def start_conversation(
        self,
        conversation_id: Optional[str],
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConversationStart:
        bot_config = await self.config_store.get(organization_id)
        now = now or self.clock()
        conversation_id = conversation_id or f"conv-{uuid.uuid4().hex}"
        hours = bot_config.operating_hours

        if not is_online(hours, now):
            return ConversationStart(
                conversation_id=conversation_id,
                greeting=offline_message(hours, bot_config.name),
                bot_name=bot_config.name,
                is_offline=True,
                next_opening=describe_next_opening(hours, now),
                operating_hours=describe_hours(hours),
            )

        await self.state_store.touch(conversation_id)
        return ConversationStart(
            conversation_id=conversation_id,
            greeting=bot_config.greeting,
            bot_name=bot_config.name,
            is_offline=False,
        )

    async def hours_status(self, organization_id: Optional[str] = None, now: Optional[datetime] = None) -> HoursStatus:
        bot_config = await self.config_store.get(organization_id)
        now = now or self.clock()
        hours = bot_config.operating_hours
        online = is_online(hours, now)
        return HoursStatus(
            is_online=online,
            operating_hours=describe_hours(hours),
            next_opening=None if online else describe_next_opening(hours, now),
            current_time=now.astimezone(timezone.utc).isoformat(),
        )

    def _gate(self, bot_config: BotConfig, now: datetime) -> Optional[ResolutionResult]:
        hours = bot_config.operating_hours
        if is_online(hours, now):
            return None
        logger.debug("Bot %s is outside operating hours", bot_config.name)
        return compose_offline(offline_message(hours, bot_config.name))

    async def _attempt_ai(self, message: str, conversation_id: str, bot_config: BotConfig) -> Optional[ResolutionResult]:
        if self.ai_responder is None:
            logger.debug("No AI responder configured, using fallback chain")
            return None
        try:
            reply = await asyncio.wait_for(
                self.ai_responder.respond(message, conversation_id, bot_config), timeout=self.ai_timeout
            )
            if reply is None or not reply.text or not reply.text.strip():
                logger.warning("AI responder returned an empty reply, using fallback chain")
                return None
            return compose_ai(reply)
        except asyncio.TimeoutError:
            logger.warning("AI responder timed out after %.1fs, using fallback chain", self.ai_timeout)
        except Exception as exc:
            logger.warning("AI responder failed (%s), using fallback chain", exc,
                           exc_info=logger.isEnabledFor(logging.DEBUG))
        return None

    async def _run_fallback(self, message: str, bot_config: BotConfig) -> ResolutionResult:
        try:
            return await self._fallback_chain(message, bot_config)
        except Exception:
            logger.exception("Fallback chain failed, returning emergency response")
            return compose_emergency()

    async def _fallback_chain(self, message: str, bot_config: BotConfig) -> ResolutionResult:
        keyword = detect_escalation(message, bot_config.escalation_keywords)
        if keyword is not None:
            logger.debug("Escalation keyword matched: %s", keyword)
            return compose_escalation()

        qa_match = match_qa(message, bot_config.qa_database)
        if qa_match is not None:
            logger.debug("Q&A %s match: %s", qa_match.kind, qa_match.entry.question)
            return compose_qa(qa_match)

        if self.knowledge is not None:
            verdict = await self.knowledge.search(message, bot_config)
            if verdict is not None:
                logger.debug("Knowledge base match from %s", ", ".join(verdict.knowledge_sources))
                return compose_knowledge(verdict)

        return compose_honest_fallback(self.specificity.is_specific_question(message))

    async def _record(self, conversation_id: str, message: str, result: ResolutionResult) -> None:
        intent = self.intents.classify(message)
        async with self.state_store.locked(conversation_id) as state:
            state.message_count += 1
            state.intent_history.append(intent.intent)
            state.last_source = result.source.value
            if result.should_escalate:
                state.escalation_attempts += 1


def _warm_up(llm: LocalQwenLLM) -> None:
    try:
        llm.warm_up()
    except Exception:
        logger.exception("Preloading %s failed; it will be retried on the first request", llm.model_id)


def build_pipeline(settings: ServiceSettings, clock: Callable[[], datetime] = utc_now) -> ResolutionPipeline:
    """Wire the default collaborators described by ``settings``."""
    searcher = LexicalKnowledgeBase()
    responder: Optional[AIResponder] = None
    if settings.llm_model:
        llm = LocalQwenLLM(
            settings.llm_model,
            quantization=settings.llm_quantization,
            max_new_tokens=settings.llm_max_new_tokens,
            temperature=settings.llm_temperature,
        )
        responder = LLMResponder(
            llm,
            knowledge=searcher,
            knowledge_timeout=settings.kb_timeout_sec,
            history_ttl_sec=settings.state_ttl_sec,
        )
        threading.Thread(target=_warm_up, args=(llm,), name="llm-warm-up", daemon=True).start()
    else:
        logger.info("LLM_MODEL not set; every message goes through the fallback chain")

    return ResolutionPipeline(
        config_store=FileBotConfigStore(settings.bots_dir, settings.default_organization),
        state_store=ConversationStateStore(settings.state_ttl_sec, settings.state_max_conversations),
        ai_responder=responder,
        knowledge=KnowledgeBaseMatcher(searcher, timeout=settings.kb_timeout_sec),
        ai_timeout=settings.ai_timeout_sec,
        clock=clock,
    )
