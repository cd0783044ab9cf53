"""
Documentation generation.

Provides:
- Workspace detection and member resolution (Cargo.toml)
- rustdoc feature-strategy fallback and failure classification
- rustdoc JSON artifact and cargo metadata dependency parsing
"""

from .artifact import DocArtifact, ItemDetails, ItemInfo, ItemSource, SourceSpan
from .dependencies import DependencyRecord, parse_dependencies
from .generator import DocGenerator, find_json_doc
from .strategies import (
    STRATEGIES,
    FailureKind,
    FeatureStrategy,
    build_rustdoc_command,
    classify_failure,
)
from .workspace import WorkspaceMembers, WorkspaceResolver

__all__ = [
    "DocArtifact",
    "ItemDetails",
    "ItemInfo",
    "ItemSource",
    "SourceSpan",
    "DependencyRecord",
    "parse_dependencies",
    "DocGenerator",
    "find_json_doc",
    "STRATEGIES",
    "FailureKind",
    "FeatureStrategy",
    "build_rustdoc_command",
    "classify_failure",
    "WorkspaceMembers",
    "WorkspaceResolver",
]
