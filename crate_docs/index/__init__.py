"""
Search index for cached crate documentation.

Provides:
- SQLite document storage under <cache>/search_index
- Boolean query parsing and BM25 ranking
- Edit-distance fuzzy search and name suggestions
"""

from .document_store import DocumentStore, SearchDocument
from .fuzzy import edit_distance, expand_term
from .query import Occur, ParsedQuery, parse_query
from .search_index import SearchIndex, SearchResult, matches_query
from .tokenize import preprocess_text

__all__ = [
    "DocumentStore",
    "SearchDocument",
    "edit_distance",
    "expand_term",
    "Occur",
    "ParsedQuery",
    "parse_query",
    "SearchIndex",
    "SearchResult",
    "matches_query",
    "preprocess_text",
]
