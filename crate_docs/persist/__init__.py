"""
Persistence layer for the crate documentation cache.

Provides:
- Validated crate identifiers and member paths
- Filesystem cache layout and metadata
- Transactional updates with backup/rollback
"""

from .identifiers import (
    CrateIdentifier,
    member_name,
    normalize_member_path,
    validate_crate_name,
    validate_member_path,
)
from .paths import CratePaths
from .storage import (
    SOURCE_GITHUB,
    SOURCE_LOCAL,
    SOURCE_REGISTRY,
    CachedCrate,
    CacheStore,
    CrateMetadata,
    MemberInfo,
)
from .transaction import CacheTransaction
from .utils import calculate_dir_size, copy_directory_contents, format_bytes

__all__ = [
    "CrateIdentifier",
    "member_name",
    "normalize_member_path",
    "validate_crate_name",
    "validate_member_path",
    "CratePaths",
    "SOURCE_GITHUB",
    "SOURCE_LOCAL",
    "SOURCE_REGISTRY",
    "CachedCrate",
    "CacheStore",
    "CrateMetadata",
    "MemberInfo",
    "CacheTransaction",
    "calculate_dir_size",
    "copy_directory_contents",
    "format_bytes",
]
