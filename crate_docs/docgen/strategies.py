"""
rustdoc feature-flag strategies and failure classification.

Generation tries each strategy in order and only advances past a strategy
when its failure looks like a compilation error. Command construction and
classification are pure so the retry loop stays a small driver.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class FeatureStrategy:
    """Feature flags passed to cargo rustdoc."""

    name: str
    flags: tuple[str, ...]


ALL_FEATURES = FeatureStrategy("all-features", ("--all-features",))
DEFAULT_FEATURES = FeatureStrategy("default", ())
NO_DEFAULT_FEATURES = FeatureStrategy("no-default-features", ("--no-default-features",))

STRATEGIES = (ALL_FEATURES, DEFAULT_FEATURES, NO_DEFAULT_FEATURES)


class FailureKind(str, Enum):
    MULTIPLE_TARGETS = "multiple_targets"
    BINARY_ONLY = "binary_only"
    WORKSPACE_MISUSE = "workspace_misuse"
    COMPILE_ERROR = "compile_error"
    UNKNOWN = "unknown"


MULTIPLE_TARGETS_MARKER = "extra arguments to `rustdoc` can only be passed to one target"
BINARY_ONLY_MARKER = "no library targets found"
WORKSPACE_MARKERS = (
    "could not find `Cargo.toml` in",
    "virtual manifest",
    "current package believes it's in a workspace when it's not",
)
COMPILE_ERROR_MARKERS = (
    "error[E",
    "could not compile",
    "error: cannot find",
    "unresolved import",
    "does not have these features",
    "does not have the feature",
    "failed to select a version",
    "failed to run custom build command",
    "error: linking with",
)


def build_rustdoc_command(
    toolchain: str,
    package: Optional[str],
    strategy: FeatureStrategy,
    lib_only: bool = False,
) -> list[str]:
    """
    Build the cargo rustdoc invocation for one attempt.

    Example:
        >>> build_rustdoc_command("nightly", "serde", DEFAULT_FEATURES)
        ['cargo', '+nightly', 'rustdoc', '-p', 'serde', '--', '--output-format', 'json', '-Z', 'unstable-options']
    """
    args = ["cargo", f"+{toolchain}", "rustdoc"]
    if package:
        args.extend(["-p", package])
    if lib_only:
        args.append("--lib")
    args.extend(strategy.flags)
    args.extend(["--", "--output-format", "json", "-Z", "unstable-options"])
    return args


def classify_failure(stderr: str) -> FailureKind:
    """
    Classify a failed rustdoc run from its diagnostics.

    Order matters: target and workspace problems are checked before the
    generic compile-error markers they may also contain.
    """
    if MULTIPLE_TARGETS_MARKER in stderr:
        return FailureKind.MULTIPLE_TARGETS
    if BINARY_ONLY_MARKER in stderr:
        return FailureKind.BINARY_ONLY
    if any(marker in stderr for marker in WORKSPACE_MARKERS):
        return FailureKind.WORKSPACE_MISUSE
    if any(marker in stderr for marker in COMPILE_ERROR_MARKERS):
        return FailureKind.COMPILE_ERROR
    return FailureKind.UNKNOWN


def is_retryable(kind: FailureKind) -> bool:
    """True when the next feature strategy may succeed."""
    return kind == FailureKind.COMPILE_ERROR


def excerpt(stderr: str, max_chars: int) -> str:
    """
    Bounded slice of diagnostics, preferring lines that mention errors.

    Args:
        stderr: Full diagnostic output
        max_chars: Upper bound on the returned text

    Returns:
        Error lines (or the tail of the output) trimmed to max_chars
    """
    lines = [line for line in stderr.splitlines() if line.strip()]
    error_lines = [line for line in lines if "error" in line.lower()]
    text = "\n".join(error_lines or lines)
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."
