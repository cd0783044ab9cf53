"""Crate source classification and acquisition."""

from .detect import (
    REGISTRY_SOURCE,
    GitReference,
    RefKind,
    SourceKind,
    SourceSpec,
    detect_source,
    parse_git_url,
)
from .downloader import CrateDownloader, extract_crate_archive, validate_git_ref

__all__ = [
    "REGISTRY_SOURCE",
    "GitReference",
    "RefKind",
    "SourceKind",
    "SourceSpec",
    "detect_source",
    "parse_git_url",
    "CrateDownloader",
    "extract_crate_archive",
    "validate_git_ref",
]
