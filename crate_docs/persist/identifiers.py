"""
Crate identifiers and workspace member paths.

The (name, version) pair is the primary cache key and is used to build
filesystem paths, so both halves are validated before any path is formed.
"""

import re
from dataclasses import dataclass

from crate_docs.errors import InvalidInputError

_CRATE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_crate_name(name: str) -> str:
    """
    Check a crate name is safe to use as a directory name.

    Args:
        name: Crate name

    Returns:
        The name unchanged

    Raises:
        InvalidInputError: If the name is empty or has characters outside [A-Za-z0-9_-]
    """
    if not name:
        raise InvalidInputError("Crate name cannot be empty")
    if not _CRATE_NAME_RE.match(name):
        raise InvalidInputError(
            f"Invalid crate name '{name}'",
            hint="Crate names may only contain letters, digits, '_' and '-'",
        )
    return name


def validate_version(version: str) -> str:
    """
    Check a version string is safe to use as a directory name.

    Versions are opaque (semver, branch, tag or a local label) but must not
    escape the crate directory.
    """
    if not version or not version.strip():
        raise InvalidInputError("Version cannot be empty")
    if version in (".", "..") or "/" in version or "\\" in version or "\x00" in version:
        raise InvalidInputError(
            f"Invalid version '{version}'",
            hint="Versions may not contain path separators",
        )
    return version


@dataclass(frozen=True)
class CrateIdentifier:
    """Validated (name, version) cache key."""

    name: str
    version: str

    def __post_init__(self):
        validate_crate_name(self.name)
        validate_version(self.version)

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"

    @classmethod
    def parse(cls, value: str) -> "CrateIdentifier":
        """
        Parse "name-version", splitting on the last dash.

        Example:
            >>> CrateIdentifier.parse("tokio-util-0.7.10")
            CrateIdentifier(name='tokio-util', version='0.7.10')
        """
        name, sep, version = value.rpartition("-")
        if not sep or not name:
            raise InvalidInputError(
                f"Invalid crate identifier '{value}'",
                hint="Expected the form name-version",
            )
        return cls(name, version)


def validate_member_path(member_path: str) -> str:
    """
    Reject member paths that could escape the workspace root.

    Args:
        member_path: Relative path such as "crates/rmcp"

    Returns:
        The path unchanged

    Raises:
        InvalidInputError: For empty, absolute, drive-letter, ".." or backslash paths
    """
    if not member_path:
        raise InvalidInputError("Member path cannot be empty")
    if member_path.startswith("/") or member_path.startswith("\\"):
        raise InvalidInputError(f"Member path '{member_path}' must be relative")
    if len(member_path) > 2 and member_path[1] == ":":
        raise InvalidInputError(f"Member path '{member_path}' must be relative")
    if ".." in member_path:
        raise InvalidInputError(f"Member path '{member_path}' cannot contain '..'")
    if "\\" in member_path:
        raise InvalidInputError(
            f"Member path '{member_path}' must use forward slashes"
        )
    return member_path


def normalize_member_path(member_path: str) -> str:
    """Flatten a member path into a single directory name ("a/b" -> "a-b")."""
    return member_path.replace("/", "-")


def member_name(member_path: str) -> str:
    """Last segment of a member path ("crates/rmcp" -> "rmcp")."""
    return member_path.rstrip("/").rsplit("/", 1)[-1]
