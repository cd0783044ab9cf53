"""
Unit tests for crate_docs/docgen/strategies.py
"""
import pytest

from crate_docs.docgen.strategies import (
    ALL_FEATURES,
    DEFAULT_FEATURES,
    NO_DEFAULT_FEATURES,
    STRATEGIES,
    FailureKind,
    build_rustdoc_command,
    classify_failure,
    excerpt,
    is_retryable,
)


def test_strategy_order():
    assert STRATEGIES == (ALL_FEATURES, DEFAULT_FEATURES, NO_DEFAULT_FEATURES)


def test_build_command_for_member_with_lib():
    args = build_rustdoc_command("nightly-2025-06-23", "rmcp", ALL_FEATURES, lib_only=True)
    assert args == [
        "cargo", "+nightly-2025-06-23", "rustdoc", "-p", "rmcp", "--lib", "--all-features",
        "--", "--output-format", "json", "-Z", "unstable-options",
    ]


def test_build_command_without_package():
    args = build_rustdoc_command("nightly", None, NO_DEFAULT_FEATURES)
    assert "-p" not in args
    assert "--lib" not in args
    assert args.index("--no-default-features") < args.index("--")


@pytest.mark.parametrize(
    "stderr,kind",
    [
        ("error: extra arguments to `rustdoc` can only be passed to one target, consider filtering", FailureKind.MULTIPLE_TARGETS),
        ("error: no library targets found in package `tool`", FailureKind.BINARY_ONLY),
        ("error: manifest path is a virtual manifest, but this command requires running against an actual package", FailureKind.WORKSPACE_MISUSE),
        ("error[E0433]: failed to resolve: use of undeclared crate", FailureKind.COMPILE_ERROR),
        ("error: could not compile `openssl-sys` due to previous error", FailureKind.COMPILE_ERROR),
        ("error: Package `x` does not have these features: `nightly`", FailureKind.COMPILE_ERROR),
        ("error: failed to run custom build command for `ring`", FailureKind.COMPILE_ERROR),
        ("error: permission denied", FailureKind.UNKNOWN),
        ("", FailureKind.UNKNOWN),
    ],
)
def test_classify_failure(stderr, kind):
    assert classify_failure(stderr) == kind


def test_target_markers_win_over_compile_markers():
    stderr = "error[E0000]: x\nerror: no library targets found in package `x`"
    assert classify_failure(stderr) == FailureKind.BINARY_ONLY


def test_only_compile_errors_are_retryable():
    assert is_retryable(FailureKind.COMPILE_ERROR)
    for kind in FailureKind:
        if kind != FailureKind.COMPILE_ERROR:
            assert not is_retryable(kind)


def test_excerpt_prefers_error_lines_and_is_bounded():
    stderr = "   Compiling foo v0.1.0\nwarning: unused\nerror[E0425]: cannot find value\n\n"
    assert excerpt(stderr, 1000) == "error[E0425]: cannot find value"

    long = "error: " + "x" * 5000
    text = excerpt(long, 100)
    assert len(text) == 100
    assert text.endswith("...")

    assert excerpt("just noise", 1000) == "just noise"
