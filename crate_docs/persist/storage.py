"""
Filesystem-backed crate cache.

Maps (name, version[, member]) to directories under <root>/crates and keeps
a metadata.json beside each cached tree. Listing tolerates broken entries:
a missing or corrupt metadata file falls back to mtime-derived defaults.
"""

import json
import logging
import shutil
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from crate_docs.errors import CacheIOError, InvalidInputError, NotFoundError

from .identifiers import (
    CrateIdentifier,
    normalize_member_path,
    validate_crate_name,
    validate_member_path,
)
from .paths import CRATES_DIR, MEMBERS_DIR, METADATA_FILE, CratePaths
from .utils import calculate_dir_size

logger = logging.getLogger(__name__)

SOURCE_REGISTRY = "crates.io"
SOURCE_GITHUB = "github"
SOURCE_LOCAL = "local"


@dataclass
class MemberInfo:
    """Where a workspace member lives inside its crate's source tree."""

    original_path: str       # e.g., crates/rmcp
    normalized_path: str     # e.g., crates-rmcp
    package_name: str        # name from the member's own Cargo.toml

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MemberInfo":
        """Create from dict."""
        return cls(
            original_path=data["original_path"],
            normalized_path=data["normalized_path"],
            package_name=data["package_name"],
        )


@dataclass
class CrateMetadata:
    """Persisted cache entry for a crate (or one of its members)."""

    name: str
    version: str
    cached_at: datetime
    doc_generated: bool = False
    size_bytes: int = 0
    source: str = SOURCE_REGISTRY
    source_path: Optional[str] = None
    member_info: Optional[MemberInfo] = None
    members: Optional[list[str]] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization (cached_at as RFC3339)."""
        data: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "cached_at": self.cached_at.isoformat(),
            "doc_generated": self.doc_generated,
            "size_bytes": self.size_bytes,
            "source": self.source,
            "source_path": self.source_path,
        }
        if self.member_info is not None:
            data["member_info"] = self.member_info.to_dict()
        if self.members is not None:
            data["members"] = list(self.members)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CrateMetadata":
        """Create from dict."""
        cached_at = datetime.fromisoformat(data["cached_at"].replace("Z", "+00:00"))
        member_info = data.get("member_info")
        members = data.get("members")
        return cls(
            name=data["name"],
            version=data["version"],
            cached_at=cached_at,
            doc_generated=bool(data.get("doc_generated", False)),
            size_bytes=int(data.get("size_bytes", 0)),
            source=data.get("source") or SOURCE_REGISTRY,
            source_path=data.get("source_path"),
            member_info=MemberInfo.from_dict(member_info) if member_info else None,
            members=list(members) if members is not None else None,
        )


@dataclass
class CachedCrate:
    """One row of a cache listing."""

    metadata: CrateMetadata
    members: list[str] = field(default_factory=list)


class CacheStore:
    """
    Content-addressed crate storage rooted at a cache directory.

    Layout:
        <root>/crates/<name>/<version>/source/
        <root>/crates/<name>/<version>/{docs,dependencies,metadata}.json
        <root>/crates/<name>/<version>/members/<normalized>/...
    """

    def __init__(self, root: Path):
        """
        Initialize store at given root.

        Args:
            root: Cache root directory (created if missing)
        """
        self.root = Path(root)
        try:
            self.crates_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f"Failed to create cache directory {self.root}: {e}") from e

    @property
    def crates_dir(self) -> Path:
        """Directory holding every cached crate."""
        return self.root / CRATES_DIR

    def paths(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> CratePaths:
        """Resolve the directory layout for a crate or one of its members."""
        normalized = None
        if member:
            validate_member_path(member)
            normalized = normalize_member_path(member)
        return CratePaths(
            crate_dir=self.crates_dir / crate_id.name / crate_id.version,
            member=normalized,
        )

    def crate_path(self, crate_id: CrateIdentifier) -> Path:
        return self.paths(crate_id).crate_dir

    def source_path(self, crate_id: CrateIdentifier) -> Path:
        return self.paths(crate_id).source_dir

    def member_path(self, crate_id: CrateIdentifier, member: str) -> Path:
        return self.paths(crate_id, member).output_dir

    def docs_path(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> Path:
        return self.paths(crate_id, member).docs_path

    def dependencies_path(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> Path:
        return self.paths(crate_id, member).dependencies_path

    def metadata_path(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> Path:
        return self.paths(crate_id, member).metadata_path

    # ------------------------------------------------------------------ checks

    def is_cached(self, crate_id: CrateIdentifier) -> bool:
        """True when the crate's source tree exists."""
        return self.source_path(crate_id).is_dir()

    def has_docs(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> bool:
        """True when rustdoc JSON exists for the crate or member."""
        return self.docs_path(crate_id, member).is_file()

    def has_member_docs(self, crate_id: CrateIdentifier, member: str) -> bool:
        return self.has_docs(crate_id, member)

    def ensure_dir(self, path: Path) -> Path:
        """Create a directory (and parents) if needed."""
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f"Failed to create directory {path}: {e}") from e
        return path

    # ---------------------------------------------------------------- metadata

    def save_metadata(
        self,
        metadata: CrateMetadata,
        member: Optional[str] = None,
    ) -> CrateMetadata:
        """
        Write metadata.json for a crate or member.

        Args:
            metadata: Entry to persist
            member: Optional member path

        Returns:
            The entry as written
        """
        crate_id = CrateIdentifier(metadata.name, metadata.version)
        path = self.metadata_path(crate_id, member)
        self._write_json(path, metadata.to_dict())
        return metadata

    def load_metadata(
        self,
        crate_id: CrateIdentifier,
        member: Optional[str] = None,
    ) -> Optional[CrateMetadata]:
        """
        Read metadata.json for a crate or member.

        Returns:
            CrateMetadata if the file exists, None otherwise

        Raises:
            CacheIOError: If the file exists but cannot be parsed
        """
        path = self.metadata_path(crate_id, member)
        if not path.exists():
            return None
        data = self._read_json(path)
        try:
            return CrateMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CacheIOError(f"Corrupt metadata for {crate_id}: {e}") from e

    def stamp_metadata(
        self,
        crate_id: CrateIdentifier,
        source: str = SOURCE_REGISTRY,
        source_path: Optional[str] = None,
        member_info: Optional[MemberInfo] = None,
    ) -> CrateMetadata:
        """
        Record a fresh cache entry, measuring size and docs presence now.

        Args:
            crate_id: Crate identifier
            source: Source kind (crates.io, github, local)
            source_path: Source detail (URL or local path)
            member_info: Set when stamping a workspace member

        Returns:
            The written CrateMetadata
        """
        member = member_info.original_path if member_info else None
        size_dir = (
            self.member_path(crate_id, member) if member else self.crate_path(crate_id)
        )
        metadata = CrateMetadata(
            name=crate_id.name,
            version=crate_id.version,
            cached_at=datetime.now(timezone.utc),
            doc_generated=self.has_docs(crate_id, member),
            size_bytes=calculate_dir_size(size_dir),
            source=source,
            source_path=source_path,
            member_info=member_info,
        )
        return self.save_metadata(metadata, member)

    # ------------------------------------------------------------------- docs

    def save_docs(self, crate_id: CrateIdentifier, data: dict, member: Optional[str] = None) -> Path:
        """Write rustdoc JSON into the cache."""
        path = self.docs_path(crate_id, member)
        self._write_json(path, data)
        return path

    def load_docs(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> dict:
        """
        Read cached rustdoc JSON.

        Raises:
            NotFoundError: If docs have not been generated
        """
        path = self.docs_path(crate_id, member)
        if not path.exists():
            target = f"{crate_id} member {member}" if member else str(crate_id)
            raise NotFoundError(f"No documentation cached for {target}")
        return self._read_json(path)

    def save_dependencies(
        self,
        crate_id: CrateIdentifier,
        raw: str,
        member: Optional[str] = None,
    ) -> Path:
        """Write raw cargo metadata output untouched."""
        path = self.dependencies_path(crate_id, member)
        try:
            self.ensure_dir(path.parent)
            path.write_text(raw, encoding="utf-8")
        except OSError as e:
            raise CacheIOError(f"Failed to write {path}: {e}") from e
        return path

    def load_dependencies(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> dict:
        """
        Read cached cargo metadata.

        Raises:
            NotFoundError: If no dependency metadata was stored
        """
        path = self.dependencies_path(crate_id, member)
        if not path.exists():
            target = f"{crate_id} member {member}" if member else str(crate_id)
            raise NotFoundError(f"No dependency information cached for {target}")
        return self._read_json(path)

    # ---------------------------------------------------------------- listing

    def list_cached_crates(self) -> list[CachedCrate]:
        """
        Scan the cache for every crate version.

        Broken entries are logged and listed with fallback metadata instead of
        aborting the scan.

        Returns:
            CachedCrate rows sorted by name then version
        """
        results: list[CachedCrate] = []
        if not self.crates_dir.exists():
            return results

        for name_dir in sorted(self.crates_dir.iterdir()):
            if not name_dir.is_dir():
                continue
            for version_dir in sorted(name_dir.iterdir()):
                if not version_dir.is_dir():
                    continue
                try:
                    crate_id = CrateIdentifier(name_dir.name, version_dir.name)
                except InvalidInputError:
                    logger.warning(f"Skipping unexpected cache entry {version_dir}")
                    continue

                metadata = self._metadata_or_fallback(crate_id, version_dir)
                members = self.list_workspace_members(crate_id)
                results.append(CachedCrate(metadata=metadata, members=members))

        return results

    def _metadata_or_fallback(self, crate_id: CrateIdentifier, version_dir: Path) -> CrateMetadata:
        try:
            metadata = self.load_metadata(crate_id)
        except CacheIOError as e:
            logger.warning(f"Failed to load metadata for {crate_id}: {e}")
            metadata = None

        if metadata is not None:
            return metadata

        mtime = version_dir.stat().st_mtime
        return CrateMetadata(
            name=crate_id.name,
            version=crate_id.version,
            cached_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
            doc_generated=self.has_docs(crate_id),
            size_bytes=0,
            source=SOURCE_REGISTRY,
        )

    def list_versions(self, name: str) -> list[str]:
        """All cached versions of a crate, sorted."""
        validate_crate_name(name)
        name_dir = self.crates_dir / name
        if not name_dir.is_dir():
            return []
        return sorted(p.name for p in name_dir.iterdir() if p.is_dir())

    def list_workspace_members(self, crate_id: CrateIdentifier) -> list[str]:
        """
        Member paths with cached output for a crate.

        Returns:
            Original (slash-form) member paths, sorted
        """
        members_dir = self.crate_path(crate_id) / MEMBERS_DIR
        if not members_dir.is_dir():
            return []

        members = []
        for member_dir in sorted(members_dir.iterdir()):
            metadata_file = member_dir / METADATA_FILE
            if not metadata_file.is_file():
                continue
            try:
                data = json.loads(metadata_file.read_text(encoding="utf-8"))
                members.append(data["member_info"]["original_path"])
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to read member metadata {metadata_file}: {e}")
        return sorted(members)

    # ---------------------------------------------------------------- removal

    def remove_crate(self, crate_id: CrateIdentifier) -> bool:
        """
        Delete a cached crate version.

        Returns:
            True if something was removed
        """
        path = self.crate_path(crate_id)
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise CacheIOError(f"Failed to remove {crate_id}: {e}") from e

        # Drop the empty name directory
        name_dir = path.parent
        if name_dir.exists() and not any(name_dir.iterdir()):
            name_dir.rmdir()
        return True

    def remove_member(self, crate_id: CrateIdentifier, member: str) -> bool:
        """Delete the cached output of one workspace member."""
        path = self.member_path(crate_id, member)
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise CacheIOError(f"Failed to remove {crate_id} member {member}: {e}") from e
        return True

    def calculate_dir_size(self, path: Path) -> int:
        return calculate_dir_size(path)

    # ---------------------------------------------------------------- json io

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            self.ensure_dir(path.parent)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise CacheIOError(f"Failed to write {path}: {e}") from e

    def _read_json(self, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise CacheIOError(f"Failed to read {path}: {e}") from e
