"""
crate_docs - documentation cache and search engine for Rust crates.

Acquires crate source, drives rustdoc JSON generation, persists the results
in a versioned on-disk cache and indexes them for full-text and fuzzy search.
"""

__version__ = "0.1.0"
