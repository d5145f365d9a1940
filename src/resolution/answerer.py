"""Builds the single ResolutionResult for whichever stage answered."""

from .qa import QAMatch
from .types import AIReply, KnowledgeVerdict, ResolutionResult, ResponseSource

ESCALATION_MESSAGE = (
    "I understand you'd like to speak with a human agent. "
    "Let me connect you with someone who can help you better."
)
HONEST_NO_MATCH_MESSAGE = (
    "I don't have specific information about that topic in my current knowledge base. "
    "For accurate details, I'd recommend speaking with one of our human agents who can "
    "provide you with the most up-to-date information."
)
CLARIFICATION_MESSAGE = (
    "I'm not sure I understand what you're looking for. Could you provide more details or "
    "rephrase your question? Alternatively, I can connect you with a human agent who might "
    "be better able to assist you."
)
EMERGENCY_MESSAGE = (
    "I'm having trouble processing your request right now. Please try again in a moment, "
    "or contact our support team for immediate assistance."
)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def compose_offline(message: str) -> ResolutionResult:
    return ResolutionResult(
        message=message,
        confidence=1.0,
        source=ResponseSource.OPERATING_HOURS_CHECK,
        should_escalate=False,
        is_offline=True,
    )


def compose_ai(reply: AIReply) -> ResolutionResult:
    sources = tuple(reply.knowledge_sources)
    return ResolutionResult(
        message=reply.text.strip(),
        confidence=_clamp(reply.confidence),
        source=ResponseSource.AI_FALLBACK if reply.fallback else ResponseSource.AI,
        should_escalate=reply.should_escalate,
        knowledge_used=bool(sources),
        knowledge_sources=sources,
    )


def compose_escalation() -> ResolutionResult:
    return ResolutionResult(
        message=ESCALATION_MESSAGE,
        confidence=0.9,
        source=ResponseSource.ESCALATION_DETECTION,
        should_escalate=True,
    )


def compose_qa(match: QAMatch) -> ResolutionResult:
    return ResolutionResult(
        message=match.entry.answer,
        confidence=match.confidence,
        source=ResponseSource.QA_DATABASE,
        should_escalate=False,
    )


def compose_knowledge(verdict: KnowledgeVerdict) -> ResolutionResult:
    sources = tuple(verdict.knowledge_sources)
    return ResolutionResult(
        message=verdict.message,
        confidence=_clamp(verdict.confidence),
        source=ResponseSource.KNOWLEDGE_BASE,
        should_escalate=verdict.should_escalate,
        knowledge_used=verdict.knowledge_used,
        knowledge_sources=sources if verdict.knowledge_used else (),
    )


def compose_honest_fallback(is_specific: bool) -> ResolutionResult:
    if is_specific:
        return ResolutionResult(
            message=HONEST_NO_MATCH_MESSAGE,
            confidence=0.8,
            source=ResponseSource.HONEST_NO_MATCH,
            should_escalate=True,
        )
    return ResolutionResult(
        message=CLARIFICATION_MESSAGE,
        confidence=0.7,
        source=ResponseSource.CLARIFICATION_NEEDED,
        should_escalate=False,
    )


def compose_emergency() -> ResolutionResult:
    return ResolutionResult(
        message=EMERGENCY_MESSAGE,
        confidence=0.1,
        source=ResponseSource.EMERGENCY_FALLBACK,
        should_escalate=True,
    )
