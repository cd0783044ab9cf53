"""
Cache directory layout.

Every cached crate lives at <root>/crates/<name>/<version>/ with its source
tree, rustdoc JSON, dependency metadata and cache metadata side by side.
Workspace members nest under members/<normalized-member>/.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

CRATES_DIR = "crates"
MEMBERS_DIR = "members"
SOURCE_DIR = "source"
SEARCH_INDEX_DIR = "search_index"
TARGET_DIR = "target"
DOC_DIR = "doc"
BACKUP_DIR_PREFIX = "crate-docs-backup"
METADATA_FILE = "metadata.json"
DOCS_FILE = "docs.json"
DEPENDENCIES_FILE = "dependencies.json"
CARGO_TOML = "Cargo.toml"

# Directories never copied out of a source checkout
VCS_DIRS = (".git", ".svn", ".hg")


@dataclass
class CratePaths:
    """Centralized paths for one cached crate version."""

    crate_dir: Path            # e.g., <root>/crates/serde/1.0.0
    member: Optional[str] = None  # normalized member name

    @property
    def source_dir(self) -> Path:
        """Path to the extracted source tree."""
        return self.crate_dir / SOURCE_DIR

    @property
    def members_dir(self) -> Path:
        """Path holding per-member generated output."""
        return self.crate_dir / MEMBERS_DIR

    @property
    def output_dir(self) -> Path:
        """Directory that holds docs/dependencies/metadata for this target."""
        if self.member:
            return self.members_dir / self.member
        return self.crate_dir

    @property
    def docs_path(self) -> Path:
        """Path to rustdoc JSON."""
        return self.output_dir / DOCS_FILE

    @property
    def dependencies_path(self) -> Path:
        """Path to raw cargo metadata output."""
        return self.output_dir / DEPENDENCIES_FILE

    @property
    def metadata_path(self) -> Path:
        """Path to cache metadata."""
        return self.output_dir / METADATA_FILE

    @property
    def target_doc_dir(self) -> Path:
        """Path where rustdoc writes its JSON output."""
        return self.source_dir / TARGET_DIR / DOC_DIR

