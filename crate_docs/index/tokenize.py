"""Tokenization shared by indexing and querying."""

import re
from typing import List

_TOKEN_RE = re.compile(r"[a-z0-9]+")

# BM25 needs at least one token per document
EMPTY_TOKEN = "empty"


def preprocess_text(text: str) -> List[str]:
    """
    Split text into lowercase alphanumeric tokens.

    Identifiers are broken on punctuation, so "HashMap::new" and
    "demo_function" yield ["hashmap", "new"] and ["demo", "function"].

    Args:
        text: Input text to tokenize

    Returns:
        List of tokens
    """
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def bm25_tokens(tokens: List[str]) -> List[str]:
    """Token list safe to feed into BM25Okapi."""
    return tokens if tokens else [EMPTY_TOKEN]
