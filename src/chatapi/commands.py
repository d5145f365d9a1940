"""Typed commands the HTTP routes hand to the resolution pipeline."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from resolution.pipeline import ResolutionPipeline


@dataclass(frozen=True)
class ChatCommand:
    message: str
    conversation_id: str
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class StartConversationCommand:
    conversation_id: Optional[str] = None
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class QAMatchCommand:
    message: str
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class HoursStatusCommand:
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class ConversationStateQuery:
    conversation_id: str


class UnknownCommandError(LookupError):
    pass


Handler = Callable[[Any], Awaitable[Optional[Dict[str, Any]]]]


class CommandDispatcher:
    """Maps each command type to the pipeline operation that serves it.

    Handlers return the ``data`` payload of the response, or None when the
    requested object does not exist.
    """

    def __init__(self, pipeline: ResolutionPipeline, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.pipeline = pipeline
        self.clock = clock
        self._handlers: Dict[Type[Any], Handler] = {
            ChatCommand: self._chat,
            StartConversationCommand: self._start,
            QAMatchCommand: self._qa_match,
            HoursStatusCommand: self._hours_status,
            ConversationStateQuery: self._conversation_state,
        }

    async def dispatch(self, command: Any) -> Optional[Dict[str, Any]]:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise UnknownCommandError(type(command).__name__)
        return await handler(command)

    def _now(self) -> Optional[datetime]:
        return self.clock() if self.clock else None

    async def _chat(self, command: ChatCommand) -> Dict[str, Any]:
        result = await self.pipeline.resolve(
            command.message, command.conversation_id, command.organization_id, now=self._now()
        )
        return result.to_dict()

    async def _start(self, command: StartConversationCommand) -> Dict[str, Any]:
        start = await self.pipeline.start_conversation(
            command.conversation_id, command.organization_id, now=self._now()
        )
        return start.to_dict()

    async def _qa_match(self, command: QAMatchCommand) -> Dict[str, Any]:
        result = await self.pipeline.resolve_fallback_only(command.message, command.organization_id, now=self._now())
        return result.to_dict()

    async def _hours_status(self, command: HoursStatusCommand) -> Dict[str, Any]:
        status = await self.pipeline.hours_status(command.organization_id, now=self._now())
        return status.to_dict()

    async def _conversation_state(self, command: ConversationStateQuery) -> Optional[Dict[str, Any]]:
        state = self.pipeline.state_store.get(command.conversation_id)
        return state.to_dict() if state else None
