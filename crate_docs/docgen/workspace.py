"""
Cargo workspace detection.

Reads Cargo.toml with tomllib to tell single crates from workspaces, list
declared members and resolve a member's real package name.
"""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from crate_docs.errors import CacheIOError, InvalidInputError, NotFoundError
from crate_docs.persist import validate_member_path
from crate_docs.persist.paths import CARGO_TOML

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceMembers:
    """Declared workspace members; glob patterns are reported, not expanded."""

    members: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _manifest_path(path: Path) -> Path:
    path = Path(path)
    return path if path.name == CARGO_TOML else path / CARGO_TOML


def load_manifest(path: Path) -> dict:
    """
    Parse a Cargo.toml.

    Args:
        path: Manifest file or the directory containing it

    Raises:
        NotFoundError: If the manifest is missing
        InvalidInputError: If it is not valid TOML
    """
    manifest = _manifest_path(path)
    if not manifest.is_file():
        raise NotFoundError(f"No {CARGO_TOML} found at {manifest.parent}")
    try:
        with open(manifest, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise InvalidInputError(f"Failed to parse {manifest}: {e}") from e
    except OSError as e:
        raise CacheIOError(f"Failed to read {manifest}: {e}") from e


class WorkspaceResolver:
    """Workspace queries over a source tree's manifests."""

    def is_workspace(self, path: Path) -> bool:
        """
        True when the manifest declares workspace members.

        A root that is also a package ("mixed") still counts: callers must pick
        a member.
        """
        manifest = load_manifest(path)
        workspace = manifest.get("workspace")
        return isinstance(workspace, dict) and "members" in workspace

    def get_workspace_members(self, path: Path) -> WorkspaceMembers:
        """
        List declared workspace members.

        Entries containing "*" are not expanded; they are returned in
        `skipped` so callers can report them.
        """
        manifest = load_manifest(path)
        declared = manifest.get("workspace", {}).get("members", [])

        result = WorkspaceMembers()
        for entry in declared:
            if not isinstance(entry, str):
                continue
            if "*" in entry:
                result.skipped.append(entry)
            else:
                result.members.append(entry.rstrip("/"))

        if result.skipped:
            logger.warning(
                f"Skipping glob workspace members in {path}: {', '.join(result.skipped)}"
            )
        return result

    def get_package_name(self, path: Path) -> str:
        """Package name from a manifest's [package] table."""
        package = self._package_table(path)
        name = package.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidInputError(f"No 'name' field found in [package] section of {_manifest_path(path)}")
        return name

    def get_package_version(self, path: Path) -> str:
        """Package version from a manifest's [package] table."""
        package = self._package_table(path)
        version = package.get("version")
        if not isinstance(version, str) or not version:
            raise InvalidInputError(f"No 'version' field found in [package] section of {_manifest_path(path)}")
        return version

    def resolve_member(self, source_dir: Path, member: str) -> str:
        """
        Resolve the package name of a workspace member.

        Args:
            source_dir: Workspace root
            member: Member path relative to the root

        Returns:
            Package name declared in the member's Cargo.toml

        Raises:
            NotFoundError: If the member has no Cargo.toml
        """
        validate_member_path(member)
        member_dir = source_dir / member
        if not (member_dir / CARGO_TOML).is_file():
            raise NotFoundError(
                f"Workspace member '{member}' not found",
                hint=f"No {CARGO_TOML} at {member_dir}",
            )
        return self.get_package_name(member_dir)

    def _package_table(self, path: Path) -> dict:
        package = load_manifest(path).get("package")
        if not isinstance(package, dict):
            raise InvalidInputError(f"No [package] section found in {_manifest_path(path)}")
        return package
