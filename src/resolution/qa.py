from dataclasses import dataclass
from typing import Iterable, Optional

from .text import normalize_text
from .types import QAEntry

DIRECT_MATCH_CONFIDENCE = 0.85
KEYWORD_MATCH_CONFIDENCE = 0.75


@dataclass(frozen=True)
class QAMatch:
    entry: QAEntry
    kind: str
    confidence: float
    matched_keyword: Optional[str] = None


def match_qa(message: str, entries: Iterable[QAEntry]) -> Optional[QAMatch]:
    """Find the curated answer for ``message``.

    Enabled entries are scanned in configured order. Each entry is first tried
    as a direct match (question inside the message or the message inside the
    question), then by its keywords, before the next entry is looked at.
    """
    text = normalize_text(message)
    if not text:
        return None

    for entry in entries:
        if not entry.enabled:
            continue
        question = normalize_text(entry.question)
        if question and (question in text or text in question):
            return QAMatch(entry=entry, kind="direct", confidence=DIRECT_MATCH_CONFIDENCE)
        for keyword in entry.keywords:
            needle = normalize_text(keyword)
            if needle and needle in text:
                return QAMatch(
                    entry=entry,
                    kind="keyword",
                    confidence=KEYWORD_MATCH_CONFIDENCE,
                    matched_keyword=keyword,
                )
    return None
