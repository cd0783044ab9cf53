"""
Source descriptor classification.

Turns the optional "source" string a caller passes alongside a crate
identifier into a registry, git or local-path source.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from crate_docs.errors import InvalidInputError


class SourceKind(str, Enum):
    REGISTRY = "registry"
    GIT = "git"
    LOCAL = "local"


class RefKind(str, Enum):
    DEFAULT = "default"
    BRANCH = "branch"
    TAG = "tag"


@dataclass(frozen=True)
class GitReference:
    """Branch, tag or the repository's default branch."""

    kind: RefKind = RefKind.DEFAULT
    name: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.kind == RefKind.DEFAULT


@dataclass(frozen=True)
class SourceSpec:
    """Classified source for a crate."""

    kind: SourceKind
    url: Optional[str] = None
    repo_path: Optional[str] = None
    reference: GitReference = GitReference()
    local_path: Optional[str] = None

    @property
    def detail(self) -> Optional[str]:
        """Human-readable source detail stored in cache metadata."""
        if self.kind == SourceKind.GIT:
            if self.repo_path:
                return f"{self.url}#{self.repo_path}"
            return self.url
        if self.kind == SourceKind.LOCAL:
            return self.local_path
        return None


REGISTRY_SOURCE = SourceSpec(kind=SourceKind.REGISTRY)

_LOCAL_PREFIXES = ("/", "~/", "./", "../")


def detect_source(source: Optional[str]) -> SourceSpec:
    """
    Classify a source descriptor.

    Precedence: http(s) URL -> git; path-like prefix or any separator ->
    local; anything else (including None) -> registry.

    Args:
        source: Descriptor string, e.g. "https://github.com/u/r#tag:v1",
            "~/src/my-crate" or None

    Returns:
        SourceSpec
    """
    if source is None or not source.strip():
        return REGISTRY_SOURCE

    source = source.strip()
    if source.startswith("http://") or source.startswith("https://"):
        return parse_git_url(source)

    if source.startswith(_LOCAL_PREFIXES) or "/" in source or "\\" in source:
        return SourceSpec(kind=SourceKind.LOCAL, local_path=source)

    return REGISTRY_SOURCE


def parse_git_url(url: str) -> SourceSpec:
    """
    Parse a git URL, honouring "#branch:<b>" / "#tag:<t>" suffixes and
    GitHub ".../tree/<branch>/<sub/path>" links.
    """
    reference = GitReference()
    base, _, fragment = url.partition("#")
    if fragment:
        if fragment.startswith("branch:"):
            reference = GitReference(RefKind.BRANCH, fragment[len("branch:"):])
        elif fragment.startswith("tag:"):
            reference = GitReference(RefKind.TAG, fragment[len("tag:"):])
        else:
            raise InvalidInputError(
                f"Unsupported git URL fragment '#{fragment}'",
                hint="Use '#branch:<name>' or '#tag:<name>'",
            )
        if not reference.name:
            raise InvalidInputError(f"Empty git reference in '{url}'")

    parsed = urlparse(base)
    host = (parsed.hostname or "").lower()
    if not host:
        raise InvalidInputError(f"Invalid git URL '{url}'")

    if host != "github.com":
        return SourceSpec(kind=SourceKind.GIT, url=base.rstrip("/"), reference=reference)

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise InvalidInputError(
            f"Invalid GitHub URL '{url}'",
            hint="Expected https://github.com/<owner>/<repo>",
        )

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    repo_url = f"https://github.com/{owner}/{repo}"

    repo_path = None
    if len(parts) > 3 and parts[2] == "tree":
        if reference.is_default:
            reference = GitReference(RefKind.BRANCH, parts[3])
        if len(parts) > 4:
            repo_path = "/".join(parts[4:])

    return SourceSpec(
        kind=SourceKind.GIT,
        url=repo_url,
        repo_path=repo_path,
        reference=reference,
    )
