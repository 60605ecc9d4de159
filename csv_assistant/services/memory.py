"""
Long-term memory for the chat agent.

Cards and the core briefing are indexed as short text documents; each chat
turn retrieves the top-k most relevant ones. KeywordMemoryStore ranks by
token overlap; a vector search service can replace it behind MemoryStore.
"""
import re
import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, Iterable, List
from csv_assistant.core.schemas import MemoryDocument

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r'\w+', re.UNICODE)
_STOPWORDS = frozenset({
    'a', 'an', 'and', 'are', 'by', 'for', 'from', 'in', 'is', 'it', 'me', 'of',
    'on', 'or', 'show', 'the', 'to', 'what', 'with',
})


def tokenize(text: str) -> List[str]:
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in _STOPWORDS]


class MemoryStore(ABC):
    """Abstract memory collaborator."""

    @abstractmethod
    def add_document(self, document: MemoryDocument) -> None:
        """Index a document, replacing any previous one with the same id."""

    @abstractmethod
    def search(self, query: str, k: int) -> List[MemoryDocument]:
        """Return up to k documents ranked by relevance to the query."""

    @abstractmethod
    def clear(self) -> None:
        """Forget every document."""

    @abstractmethod
    def documents(self) -> List[MemoryDocument]:
        """All indexed documents, in insertion order."""

    def rehydrate(self, documents: Iterable[MemoryDocument]) -> None:
        """Replace the index with previously persisted documents."""
        self.clear()
        for document in documents:
            self.add_document(document)


class KeywordMemoryStore(MemoryStore):
    """In-process ranker scoring documents by query token overlap."""

    def __init__(self):
        self._documents: Dict[str, MemoryDocument] = {}
        self._tokens: Dict[str, Counter] = {}

    def add_document(self, document: MemoryDocument) -> None:
        self._documents[document.id] = document
        self._tokens[document.id] = Counter(tokenize(document.text))

    def search(self, query: str, k: int) -> List[MemoryDocument]:
        query_tokens = set(tokenize(query))
        if not query_tokens or k <= 0:
            return []

        scored = []
        for position, (doc_id, tokens) in enumerate(self._tokens.items()):
            score = sum(tokens[t] for t in query_tokens)
            if score:
                scored.append((-score, position, doc_id))
        scored.sort()
        results = [self._documents[doc_id] for _, _, doc_id in scored[:k]]
        logger.debug(f"Memory search matched {len(scored)} documents, returning {len(results)}")
        return results

    def clear(self) -> None:
        self._documents.clear()
        self._tokens.clear()

    def documents(self) -> List[MemoryDocument]:
        return list(self._documents.values())
