"""
Full-text and fuzzy search over cached crate documentation.

Documents live in a single SQLite file under <cache>/search_index/; ranking
uses BM25 over the combined name/docs/path tokens with an extra weight on
name matches. Per-crate BM25 models are built on first query and dropped
whenever that crate's documents change.
"""

import logging
import re
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Optional

import numpy as np
from rank_bm25 import BM25Okapi

from crate_docs.config.settings import SearchCfg
from crate_docs.docgen.artifact import ItemInfo
from crate_docs.errors import InvalidInputError

from .document_store import ROOT_MEMBER, DocumentStore, SearchDocument, StoredDocument
from .fuzzy import expand_term
from .query import Occur, ParsedQuery, contains_sequence, parse_query
from .tokenize import bm25_tokens, preprocess_text

logger = logging.getLogger(__name__)

INDEX_DB_FILE = "documents.db"
NAME_WEIGHT = 2.0

_CRATE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class SearchResult:
    """One ranked search hit."""

    score: float
    item_id: str
    name: str
    path: str
    kind: str
    crate: str
    version: str
    visibility: str
    docs: Optional[str] = None
    member: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)


class _Corpus:
    """BM25 models and vocabulary for one crate's documents."""

    def __init__(self, documents: list[StoredDocument]):
        self.documents = documents
        self.full_bm25 = BM25Okapi([bm25_tokens(d.all_tokens) for d in documents])
        self.name_bm25 = BM25Okapi([bm25_tokens(d.name_tokens) for d in documents])
        self.vocabulary = {t for d in documents for t in d.all_tokens}
        self.name_vocabulary = {t for d in documents for t in d.name_tokens}

    def scores(self, tokens: list[str]) -> np.ndarray:
        if not tokens:
            return np.zeros(len(self.documents))
        return self.full_bm25.get_scores(tokens) + NAME_WEIGHT * self.name_bm25.get_scores(tokens)


def validate_crate_filter(crate: str) -> str:
    if not crate or not _CRATE_NAME_RE.match(crate):
        raise InvalidInputError(
            f"Invalid crate name '{crate}' for search",
            hint="Crate names may only contain letters, digits, '_' and '-'",
        )
    return crate


def _document_from_item(crate: str, version: str, member: str, item: ItemInfo) -> SearchDocument:
    return SearchDocument(
        item_id=item.id,
        name=item.name,
        docs=item.docs or "",
        path=item.joined_path,
        kind=item.kind,
        crate=crate,
        version=version,
        visibility=item.visibility,
        member=member,
    )


def _matches_clause(stored: StoredDocument, tokens: list[str], fields: Iterable[str]) -> bool:
    return any(contains_sequence(stored.field_tokens(f), tokens) for f in fields)


def matches_query(stored: StoredDocument, query: ParsedQuery) -> bool:
    """
    Evaluate a parsed boolean query against one document.

    All MUST clauses must match and no MUST_NOT clause may match; when there
    are no MUST clauses at least one SHOULD clause must match.
    """
    has_must = False
    any_should = False
    for clause in query.clauses:
        hit = _matches_clause(stored, clause.tokens, clause.fields)
        if clause.occur == Occur.MUST_NOT:
            if hit:
                return False
        elif clause.occur == Occur.MUST:
            has_must = True
            if not hit:
                return False
        elif hit:
            any_should = True
    return has_must or any_should


class SearchIndex:
    """
    Search index spanning every cached crate.

    Thread-safe: the document store serializes writes and the corpus cache is
    guarded by a lock.
    """

    def __init__(self, index_dir: Path, cfg: Optional[SearchCfg] = None):
        """
        Open (or create) the index.

        Args:
            index_dir: Directory for index files (<cache>/search_index)
            cfg: Search limits
        """
        self.index_dir = Path(index_dir)
        self.cfg = cfg or SearchCfg()
        self.store = DocumentStore(self.index_dir / INDEX_DB_FILE)
        self._corpora: dict[tuple, _Corpus] = {}
        self._generation = 0  # bumped on every write
        self._lock = threading.Lock()

    # -------------------------------------------------------------- indexing

    def add_crate_items(
        self,
        crate: str,
        version: str,
        items: list[ItemInfo],
        member: Optional[str] = None,
    ) -> int:
        """
        Index every item of a crate version, replacing earlier documents.

        Args:
            crate: Crate name
            version: Crate version
            items: Items from the crate's DocArtifact
            member: Workspace member path when indexing a member

        Returns:
            Number of documents written

        Raises:
            InvalidInputError: For unsafe crate names or too many items
        """
        validate_crate_filter(crate)
        if len(items) > self.cfg.max_items_per_crate:
            raise InvalidInputError(
                f"{crate}-{version} has {len(items)} items, more than the "
                f"{self.cfg.max_items_per_crate} that can be indexed per crate"
            )

        member_key = member or ROOT_MEMBER
        documents = [_document_from_item(crate, version, member_key, item) for item in items]
        count = self.store.replace_documents(crate, version, member_key, documents)
        self._invalidate(crate)

        logger.info(f"Indexed {count} items for {crate}-{version}" + (f" ({member})" if member else ""))
        return count

    def is_crate_indexed(self, crate: str, version: str, member: Optional[str] = None) -> bool:
        """True when documents exist for crate+version (and member, if given)."""
        validate_crate_filter(crate)
        return self.store.count(crate, version, member or ROOT_MEMBER) > 0

    def remove_crate(self, crate: str, version: str) -> int:
        """
        Remove every document for exactly one crate version.

        Returns:
            Number of documents removed
        """
        validate_crate_filter(crate)
        removed = self.store.delete(crate, version)
        self._invalidate(crate)
        if removed:
            logger.info(f"Removed {removed} indexed items for {crate}-{version}")
        return removed

    def _invalidate(self, crate: str) -> None:
        with self._lock:
            self._generation += 1
            for key in [k for k in self._corpora if k[0] == crate]:
                del self._corpora[key]

    def _corpus(self, crate: str, version: Optional[str], member: Optional[str]) -> Optional[_Corpus]:
        key = (crate, version, member)
        with self._lock:
            corpus = self._corpora.get(key)
            generation = self._generation
        if corpus is not None:
            return corpus

        documents = self.store.fetch(crate, version, member)
        if not documents:
            return None
        corpus = _Corpus(documents)
        with self._lock:
            # Skip caching when a write landed after the fetch
            if generation == self._generation:
                self._corpora[key] = corpus
        return corpus

    # ---------------------------------------------------------------- search

    def _check_query(self, query: str, limit: Optional[int]) -> int:
        if not query or not query.strip():
            raise InvalidInputError("Search query cannot be empty")
        if len(query) > self.cfg.max_query_length:
            raise InvalidInputError(
                f"Search query is too long ({len(query)} characters, maximum {self.cfg.max_query_length})"
            )
        if limit is None:
            return self.cfg.default_limit
        return max(1, min(limit, self.cfg.max_limit))

    def _check_distance(self, distance: Optional[int]) -> int:
        if distance is None:
            return self.cfg.default_fuzzy_distance
        if distance < 0 or distance > self.cfg.max_fuzzy_distance:
            raise InvalidInputError(
                f"Fuzzy distance must be between 0 and {self.cfg.max_fuzzy_distance}"
            )
        return distance

    def search(
        self,
        query: str,
        crate: str,
        version: Optional[str] = None,
        kind: Optional[str] = None,
        limit: Optional[int] = None,
        member: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Boolean full-text search within one crate.

        Args:
            query: Query text (see crate_docs.index.query for syntax)
            crate: Crate to search
            version: Restrict to one version
            kind: Keep only items of this kind
            limit: Maximum results (clamped to the configured maximum)
            member: Restrict to one workspace member

        Returns:
            SearchResult list, best first
        """
        validate_crate_filter(crate)
        limit = self._check_query(query, limit)

        parsed = parse_query(query)
        if parsed.is_empty:
            return []

        corpus = self._corpus(crate, version, member)
        if corpus is None:
            return []

        matched = [i for i, d in enumerate(corpus.documents) if matches_query(d, parsed)]
        scores = corpus.scores(parsed.positive_tokens)
        return self._rank(corpus, matched, scores, kind, limit)

    def fuzzy_search(
        self,
        query: str,
        crate: str,
        version: Optional[str] = None,
        kind: Optional[str] = None,
        limit: Optional[int] = None,
        distance: Optional[int] = None,
        member: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Typo-tolerant search within one crate.

        Each whitespace-separated term matches any name/docs/path token within
        `distance` edits; a document matches if any term does.
        """
        validate_crate_filter(crate)
        limit = self._check_query(query, limit)
        distance = self._check_distance(distance)

        corpus = self._corpus(crate, version, member)
        if corpus is None:
            return []

        expanded: set[str] = set()
        for term in query.split():
            for token in preprocess_text(term):
                expanded |= expand_term(token, corpus.vocabulary, distance)
        if not expanded:
            return []

        matched = [
            i for i, d in enumerate(corpus.documents)
            if not expanded.isdisjoint(d.all_tokens)
        ]
        scores = corpus.scores(sorted(expanded))
        return self._rank(corpus, matched, scores, kind, limit)

    def suggest(
        self,
        query: str,
        crate: str,
        version: Optional[str] = None,
        limit: int = 10,
        distance: Optional[int] = None,
    ) -> list[str]:
        """
        Item names close to the query, de-duplicated.

        Returns:
            Distinct names ordered by relevance
        """
        validate_crate_filter(crate)
        limit = self._check_query(query, limit)
        distance = self._check_distance(distance)

        corpus = self._corpus(crate, version, None)
        if corpus is None:
            return []

        expanded: set[str] = set()
        for token in preprocess_text(query):
            expanded |= expand_term(token, corpus.name_vocabulary, distance)
        if not expanded:
            return []

        scores = corpus.name_bm25.get_scores(sorted(expanded))
        matched = [
            i for i, d in enumerate(corpus.documents)
            if not expanded.isdisjoint(d.name_tokens)
        ]
        matched.sort(key=lambda i: (-scores[i], corpus.documents[i].document.name))

        names: list[str] = []
        seen: set[str] = set()
        for i in matched:
            name = corpus.documents[i].document.name
            if name not in seen:
                seen.add(name)
                names.append(name)
            if len(names) >= limit:
                break
        return names

    def _rank(
        self,
        corpus: _Corpus,
        matched: list[int],
        scores: np.ndarray,
        kind: Optional[str],
        limit: int,
    ) -> list[SearchResult]:
        if kind:
            matched = [i for i in matched if corpus.documents[i].document.kind == kind]

        matched.sort(key=lambda i: (-scores[i], corpus.documents[i].document.path))

        results = []
        for i in matched[:limit]:
            d = corpus.documents[i].document
            results.append(
                SearchResult(
                    score=float(scores[i]),
                    item_id=d.item_id,
                    name=d.name,
                    path=d.path,
                    kind=d.kind,
                    crate=d.crate,
                    version=d.version,
                    visibility=d.visibility,
                    docs=d.docs or None,
                    member=d.member or None,
                )
            )
        return results

    def stats(self) -> dict:
        return self.store.stats()

    def close(self) -> None:
        """Close the underlying document store."""
        self.store.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
