import re
from typing import Iterable, List, Protocol, Sequence, Tuple

from .types import IntentMatch

TOKEN_RE = re.compile(r"[\u4e00-\u9fff]+|[a-zA-Z0-9]+")
CJK_RE = re.compile(r"[\u4e00-\u9fff]+")
SPACE_RE = re.compile(r"\s+")

QUESTION_WORDS = ("what", "how", "when", "where", "why", "who", "which")
SPECIFIC_TOPICS = (
    "policy", "return", "refund", "shipping", "delivery", "payment",
    "account", "order", "product", "service", "hours", "contact",
    "support", "help", "price", "cost", "fee", "warranty", "guarantee",
)


def normalize_text(text: str) -> str:
    normalized = text.replace("\u3000", " ").strip().lower()
    normalized = SPACE_RE.sub(" ", normalized)
    return normalized


def tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    for part in TOKEN_RE.findall(text):
        if CJK_RE.fullmatch(part):
            if len(part) == 1:
                tokens.append(part)
            else:
                tokens.extend(part[i : i + 2] for i in range(len(part) - 1))
        else:
            tokens.append(part.lower())
    return tokens


def contains_any(text: str, needles: Iterable[str]) -> bool:
    return any(needle in text for needle in needles)


class SpecificityClassifier(Protocol):
    def is_specific_question(self, message: str) -> bool:
        ...


class KeywordSpecificityClassifier:
    """A message is specific when it carries a question word, a '?', or a known topic."""

    def __init__(
        self,
        question_words: Sequence[str] = QUESTION_WORDS,
        topics: Sequence[str] = SPECIFIC_TOPICS,
    ) -> None:
        self.question_words = tuple(question_words)
        self.topics = tuple(topics)

    def is_specific_question(self, message: str) -> bool:
        lowered = message.lower()
        return (
            contains_any(lowered, self.question_words)
            or "?" in message
            or contains_any(lowered, self.topics)
        )


class IntentClassifier(Protocol):
    def classify(self, message: str) -> IntentMatch:
        ...


# (intent, keywords, patterns, ceiling); order breaks ties.
DEFAULT_INTENTS: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...], float], ...] = (
    ("greeting", ("hello", "hi", "hey", "good morning", "good afternoon", "greetings"),
     (r"^(hi|hello|hey)\b", r"good (morning|afternoon|evening)"), 0.9),
    ("question", ("what", "how", "when", "where", "why", "which", "can you", "do you"),
     (r"^(what|how|when|where|why|which)\b", r"(\?|help me)"), 0.8),
    ("complaint", ("problem", "issue", "wrong", "broken", "not working", "disappointed", "angry"),
     (r"(not working|doesn't work|broken)", r"(angry|frustrated|disappointed)"), 0.85),
    ("request", ("please", "can you", "could you", "would you", "i need", "i want"),
     (r"^(please|can you|could you|would you)", r"(i need|i want|i would like)"), 0.8),
    ("escalation", ("human", "agent", "person", "manager", "supervisor", "speak to someone"),
     (r"(speak to|talk to).*(human|person|agent)", r"(human|real person)"), 0.95),
    ("support", ("help", "support", "assist", "guidance", "advice"),
     (r"(help me|need help|can you help)", r"(support|assistance)"), 0.8),
    ("order_inquiry", ("order", "purchase", "delivery", "shipping", "track", "status"),
     (r"(order|purchase)\s+(status|tracking|number)", r"(where is my|track my)"), 0.9),
    ("technical_issue", ("login", "password", "error", "bug", "technical", "website", "app"),
     (r"(can't login|password|technical issue)", r"(error|bug|not loading)"), 0.85),
)


class KeywordIntentClassifier:
    """Scores each intent by keyword (+0.1) and pattern (+0.3) hits, capped per intent.

    A later intent only replaces the best so far on a strictly higher score, so
    the table order decides ties. Messages that clear nothing are ``general``.
    """

    def __init__(self, intents=DEFAULT_INTENTS, baseline: float = 0.3) -> None:
        self.baseline = baseline
        self._intents = [
            (name, tuple(k.lower() for k in keywords), tuple(re.compile(p, re.IGNORECASE) for p in patterns), cap)
            for name, keywords, patterns, cap in intents
        ]

    def classify(self, message: str) -> IntentMatch:
        lowered = message.lower()
        best = IntentMatch(intent="general", confidence=self.baseline)
        for name, keywords, patterns, cap in self._intents:
            score = 0.1 * sum(1 for keyword in keywords if keyword in lowered)
            score += 0.3 * sum(1 for pattern in patterns if pattern.search(message))
            score = min(score, cap)
            if score > best.confidence:
                best = IntentMatch(intent=name, confidence=score)
        return best
