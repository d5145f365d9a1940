import asyncio
import logging
import math
import re
from collections import Counter, OrderedDict, defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .errors import KnowledgeSearchError
from .text import normalize_text, tokenize
from .types import BotConfig, KnowledgeItem, KnowledgeVerdict

logger = logging.getLogger(__name__)

SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


class BM25Index:
    def __init__(self, documents: List[str], k1: float = 1.5, b: float = 0.75) -> None:
        self.k1 = k1
        self.b = b
        self.doc_len: List[int] = []
        self.avgdl = 0.0
        self.postings: Dict[str, List[Tuple[int, int]]] = defaultdict(list)
        self.idf: Dict[str, float] = {}
        self.doc_tokens: List[List[str]] = []

        for idx, doc in enumerate(documents):
            tokens = tokenize(normalize_text(doc))
            self.doc_tokens.append(tokens)
            self.doc_len.append(len(tokens))
            for term, freq in Counter(tokens).items():
                self.postings[term].append((idx, freq))

        total_docs = len(documents)
        self.avgdl = sum(self.doc_len) / total_docs if total_docs else 0.0
        for term, posting in self.postings.items():
            df = len(posting)
            self.idf[term] = math.log((total_docs - df + 0.5) / (df + 0.5) + 1)

    def score(self, query_tokens: Sequence[str]) -> List[float]:
        scores = [0.0] * len(self.doc_tokens)
        for term in query_tokens:
            if term not in self.postings:
                continue
            idf = self.idf.get(term, 0.0)
            for doc_idx, freq in self.postings[term]:
                dl = self.doc_len[doc_idx]
                denom = freq + self.k1 * (1 - self.b + self.b * dl / (self.avgdl or 1.0))
                scores[doc_idx] += idf * (freq * (self.k1 + 1)) / denom
        return scores


@dataclass(frozen=True)
class KnowledgeChunk:
    item_name: str
    source: str
    text: str
    keywords: Tuple[str, ...]
    url: Optional[str] = None


@dataclass
class PreparedKnowledgeBase:
    chunks: List[KnowledgeChunk]
    index: BM25Index


def chunk_content(content: str, chunk_size: int = 500, overlap: int = 50) -> List[str]:
    """Split long text on sentence boundaries, carrying a few trailing words forward."""
    chunks: List[str] = []
    current = ""
    for sentence in SENTENCE_SPLIT_RE.split(content):
        if not sentence.strip():
            continue
        piece = sentence.strip() + "."
        if current and len(current) + len(piece) > chunk_size:
            chunks.append(current.strip())
            carried = current.split()[-(overlap // 10):] if overlap >= 10 else []
            current = " ".join(carried) + " " + piece
        else:
            current += " " + piece
    if current.strip():
        chunks.append(current.strip())
    return chunks


class KnowledgeSearcher(Protocol):
    def prepare(self, items: Sequence[KnowledgeItem]) -> Any:
        ...

    async def search(self, message: str, prepared: Any, bot_config: BotConfig) -> KnowledgeVerdict:
        ...


class LexicalKnowledgeBase:
    """BM25 search over enabled knowledge items, chunking long documents."""

    def __init__(
        self,
        max_results: int = 3,
        min_score: float = 1.0,
        chunk_threshold: int = 2000,
        keyword_boost: float = 2.0,
        cache_size: int = 32,
    ) -> None:
        self.max_results = max_results
        self.min_score = min_score
        self.chunk_threshold = chunk_threshold
        self.keyword_boost = keyword_boost
        self.cache_size = cache_size
        self._prepared: "OrderedDict[Tuple[KnowledgeItem, ...], PreparedKnowledgeBase]" = OrderedDict()

    def prepare(self, items: Sequence[KnowledgeItem]) -> PreparedKnowledgeBase:
        key = tuple(items)
        cached = self._prepared.get(key)
        if cached is not None:
            self._prepared.move_to_end(key)
            return cached

        chunks: List[KnowledgeChunk] = []
        for item in items:
            if not item.enabled or not item.content.strip():
                continue
            if item.chunks:
                texts = list(item.chunks)
            elif len(item.content) > self.chunk_threshold:
                texts = chunk_content(item.content)
            else:
                texts = [item.content]
            for text in texts:
                chunks.append(KnowledgeChunk(item.name, item.source, text, item.keywords, item.url))

        prepared = PreparedKnowledgeBase(chunks=chunks, index=BM25Index([c.text for c in chunks]))
        self._prepared[key] = prepared
        while len(self._prepared) > self.cache_size:
            self._prepared.popitem(last=False)
        return prepared

    async def search(self, message: str, prepared: PreparedKnowledgeBase, bot_config: BotConfig) -> KnowledgeVerdict:
        if not isinstance(prepared, PreparedKnowledgeBase):
            raise KnowledgeSearchError(f"Unprepared knowledge base: {type(prepared).__name__}")
        return await asyncio.to_thread(self._search, message, prepared)

    def _search(self, message: str, prepared: PreparedKnowledgeBase) -> KnowledgeVerdict:
        query_tokens = [t for t in tokenize(normalize_text(message)) if len(t) > 2 or not t.isascii()]
        if not query_tokens or not prepared.chunks:
            return KnowledgeVerdict(knowledge_used=False)

        bm25 = prepared.index.score(query_tokens)
        phrase = " ".join(query_tokens)
        scores: List[float] = []
        for idx, chunk in enumerate(prepared.chunks):
            counts = Counter(prepared.index.doc_tokens[idx])
            score = 0.0
            for token in query_tokens:
                hits = counts.get(token, 0)
                score += hits
                if hits and len(token) > 4:
                    score += 0.5
            for keyword in chunk.keywords:
                kw = keyword.lower()
                for token in query_tokens:
                    if kw in token or token in kw:
                        score += self.keyword_boost
            if len(query_tokens) > 1 and phrase in normalize_text(chunk.text):
                score += 2.0
            scores.append(score)

        # lexical hits decide eligibility; BM25 orders chunks with equal hits
        ranked = sorted(
            (idx for idx, score in enumerate(scores) if score >= self.min_score),
            key=lambda i: (scores[i], bm25[i]),
            reverse=True,
        )[: self.max_results]
        if not ranked:
            return KnowledgeVerdict(knowledge_used=False)

        best = prepared.chunks[ranked[0]]
        kind = "website" if best.source == "web" else "documentation"
        text = f"Based on our {kind} ({best.item_name}): {best.text}"
        if len(ranked) > 1:
            text += "\n\nI found additional related information if you need more details."

        sources: List[str] = []
        for idx in ranked:
            name = prepared.chunks[idx].item_name
            if name not in sources:
                sources.append(name)
        return KnowledgeVerdict(
            knowledge_used=True,
            message=text,
            confidence=min(0.9, 0.5 + scores[ranked[0]] * 0.1),
            source="knowledge_base",
            should_escalate=False,
            knowledge_sources=tuple(sources),
        )


class KnowledgeBaseMatcher:
    """Runs the knowledge searcher under a timeout and keeps only genuine matches."""

    def __init__(self, searcher: KnowledgeSearcher, timeout: float = 3.0) -> None:
        self.searcher = searcher
        self.timeout = timeout

    async def search(self, message: str, bot_config: BotConfig) -> Optional[KnowledgeVerdict]:
        items = [item for item in bot_config.knowledge_base if item.enabled]
        if not items:
            return None
        try:
            prepared = self.searcher.prepare(items)
            verdict = await asyncio.wait_for(
                self.searcher.search(message, prepared, bot_config), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Knowledge base search timed out after %.1fs", self.timeout)
            return None
        except Exception as exc:
            logger.warning("Knowledge base search failed: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            return None

        if verdict is None or not verdict.knowledge_used or not verdict.message:
            return None
        return verdict
