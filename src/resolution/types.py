from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ResponseSource(str, Enum):
    AI = "ai"
    AI_FALLBACK = "ai_fallback"
    QA_DATABASE = "qa_database"
    KNOWLEDGE_BASE = "knowledge_base"
    ESCALATION_DETECTION = "escalation_detection"
    HONEST_NO_MATCH = "honest_no_match"
    CLARIFICATION_NEEDED = "clarification_needed"
    OPERATING_HOURS_CHECK = "operating_hours_check"
    EMERGENCY_FALLBACK = "emergency_fallback"


@dataclass(frozen=True)
class QAEntry:
    question: str
    answer: str
    keywords: Tuple[str, ...] = ()
    enabled: bool = True
    id: str = ""
    category: str = "general"


@dataclass(frozen=True)
class KnowledgeItem:
    id: str
    name: str
    content: str
    chunks: Tuple[str, ...] = ()
    enabled: bool = True
    source: str = "upload"
    keywords: Tuple[str, ...] = ()
    url: Optional[str] = None


@dataclass(frozen=True)
class OperatingHoursSpec:
    enabled: bool
    start: str = "09:00"
    end: str = "17:00"
    timezone: str = "UTC"

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "start": self.start, "end": self.end, "timezone": self.timezone}


@dataclass(frozen=True)
class BotConfig:
    name: str
    greeting: str
    system_prompt: str
    escalation_keywords: Tuple[str, ...] = ()
    qa_database: Tuple[QAEntry, ...] = ()
    knowledge_base: Tuple[KnowledgeItem, ...] = ()
    operating_hours: Optional[OperatingHoursSpec] = None


@dataclass
class ConversationState:
    conversation_id: str
    message_count: int = 0
    start_time: float = 0.0
    last_activity: float = 0.0
    intent_history: List[str] = field(default_factory=list)
    escalation_attempts: int = 0
    last_source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "messageCount": self.message_count,
            "startTime": self.start_time,
            "lastActivity": self.last_activity,
            "intentHistory": list(self.intent_history),
            "escalationAttempts": self.escalation_attempts,
            "lastSource": self.last_source,
        }


@dataclass(frozen=True)
class IntentMatch:
    intent: str
    confidence: float


@dataclass(frozen=True)
class AIReply:
    """What the generative responder hands back on success."""

    text: str
    confidence: float = 0.8
    should_escalate: bool = False
    knowledge_sources: Tuple[str, ...] = ()
    fallback: bool = False


@dataclass(frozen=True)
class KnowledgeVerdict:
    knowledge_used: bool
    message: str = ""
    confidence: float = 0.0
    source: str = "knowledge_base"
    should_escalate: bool = False
    knowledge_sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolutionResult:
    message: str
    confidence: float
    source: ResponseSource
    should_escalate: bool = False
    knowledge_used: bool = False
    knowledge_sources: Tuple[str, ...] = ()
    is_offline: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if not self.knowledge_used and self.knowledge_sources:
            raise ValueError("knowledge_sources requires knowledge_used")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "confidence": self.confidence,
            "source": self.source.value,
            "shouldEscalate": self.should_escalate,
            "knowledgeUsed": self.knowledge_used,
            "knowledgeSources": list(self.knowledge_sources),
            "isOffline": self.is_offline,
        }
