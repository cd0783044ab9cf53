"""Test configuration and fixtures."""

import json
import tomllib
from pathlib import Path
from typing import Optional

import pytest

from crate_docs.config.settings import CacheCfg, Settings
from crate_docs.persist import CacheStore
from crate_docs.process import CommandResult

TOOLCHAIN = "nightly-2025-06-23"


def rustdoc_json(crate: str = "demo_crate", version: str = "1.0.0") -> dict:
    """Minimal rustdoc JSON: a root module, one function, one struct and an unnamed impl."""
    return {
        "root": "0",
        "crate_version": version,
        "format_version": 45,
        "index": {
            "0": {
                "id": "0",
                "name": crate,
                "visibility": "public",
                "docs": "Demo crate used in tests.",
                "inner": {"module": {"is_crate": True, "items": ["1", "2"]}},
            },
            "1": {
                "id": "1",
                "name": "hello",
                "visibility": "public",
                "docs": "Says hello to the caller.",
                "inner": {"function": {"sig": {"inputs": [], "output": None}}},
                "span": {"filename": "src/lib.rs", "begin": [2, 0], "end": [4, 1]},
            },
            "2": {
                "id": "2",
                "name": "Greeter",
                "visibility": "public",
                "docs": "Holds a greeting message.",
                "inner": {"struct": {"kind": "unit"}},
            },
            "3": {
                "id": "3",
                "name": None,
                "visibility": "default",
                "inner": {"impl": {"items": []}},
            },
        },
        "paths": {
            "0": {"path": [crate], "kind": "module"},
            "1": {"path": [crate, "hello"], "kind": "function"},
            "2": {"path": [crate, "Greeter"], "kind": "struct"},
        },
    }


def cargo_metadata_json(name: str = "demo-crate", version: str = "1.0.0") -> dict:
    """cargo metadata output with one resolved dependency."""
    root_id = f"path+file:///src/{name}#{version}"
    dep_id = "registry+https://github.com/rust-lang/crates.io-index#serde@1.0.210"
    return {
        "packages": [
            {
                "name": name,
                "version": version,
                "id": root_id,
                "dependencies": [
                    {
                        "name": "serde",
                        "req": "^1.0",
                        "kind": None,
                        "optional": True,
                        "features": ["derive"],
                        "target": None,
                    },
                    {
                        "name": "tempfile",
                        "req": "^3",
                        "kind": "dev",
                        "optional": False,
                        "features": [],
                        "target": None,
                    },
                ],
            },
            {"name": "serde", "version": "1.0.210", "id": dep_id, "dependencies": []},
        ],
        "resolve": {
            "nodes": [
                {"id": root_id, "dependencies": [dep_id]},
                {"id": dep_id, "dependencies": []},
            ],
            "root": root_id,
        },
    }


class FakeRunner:
    """
    Stand-in for run_command that emulates rustup and cargo.

    rustdoc_failures holds stderr texts returned (with exit code 101) by the
    first rustdoc invocations; later invocations succeed and write a JSON
    artifact into target/doc of the working directory. cargo metadata exits
    with 101 for packages named in metadata_failures.
    """

    def __init__(
        self,
        toolchain_installed: bool = True,
        rustdoc_failures: Optional[list[str]] = None,
        metadata: Optional[dict] = None,
        metadata_failures: Optional[set[str]] = None,
    ):
        self.toolchain_installed = toolchain_installed
        self.rustdoc_failures = list(rustdoc_failures or [])
        self.metadata = metadata
        self.metadata_failures = set(metadata_failures or ())
        self.calls: list[list[str]] = []

    @property
    def rustdoc_calls(self) -> list[list[str]]:
        return [c for c in self.calls if "rustdoc" in c]

    async def __call__(self, args, cwd=None, timeout=60.0, env=None) -> CommandResult:
        args = [str(a) for a in args]
        self.calls.append(args)

        if args[:3] == ["rustup", "toolchain", "list"]:
            stdout = "stable-x86_64-unknown-linux-gnu (default)\n"
            if self.toolchain_installed:
                stdout += f"{TOOLCHAIN}-x86_64-unknown-linux-gnu\n"
            return CommandResult(args, 0, stdout, "")

        if "rustdoc" in args:
            if self.rustdoc_failures:
                return CommandResult(args, 101, "", self.rustdoc_failures.pop(0))
            package = self._package(args, Path(cwd))
            doc_dir = Path(cwd) / "target" / "doc"
            doc_dir.mkdir(parents=True, exist_ok=True)
            crate = package.replace("-", "_")
            (doc_dir / f"{crate}.json").write_text(json.dumps(rustdoc_json(crate)), encoding="utf-8")
            return CommandResult(args, 0, "", "")

        if "metadata" in args:
            package = self._package(args, Path(cwd))
            if package in self.metadata_failures:
                return CommandResult(args, 101, "", f"error: failed to load manifest for `{package}`")
            metadata = self.metadata or cargo_metadata_json(package)
            return CommandResult(args, 0, json.dumps(metadata), "")

        return CommandResult(args, 1, "", f"unexpected command: {' '.join(args)}")

    @staticmethod
    def _package(args: list[str], cwd: Path) -> str:
        if "-p" in args:
            return args[args.index("-p") + 1]
        manifest = cwd / "Cargo.toml"
        if "--manifest-path" in args:
            manifest = Path(args[args.index("--manifest-path") + 1])
        with open(manifest, "rb") as f:
            return tomllib.load(f)["package"]["name"]


def write_crate(root: Path, name: str = "demo-crate", version: str = "1.0.0") -> Path:
    """Write a one-function library crate and return its directory."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "Cargo.toml").write_text(
        f'[package]\nname = "{name}"\nversion = "{version}"\nedition = "2021"\n',
        encoding="utf-8",
    )
    (root / "src").mkdir(exist_ok=True)
    (root / "src" / "lib.rs").write_text(
        "/// Says hello to the caller.\npub fn hello() -> &'static str {\n    \"hello\"\n}\n",
        encoding="utf-8",
    )
    return root


def write_workspace(root: Path, members: list[str]) -> Path:
    """Write a virtual workspace whose concrete members are library crates."""
    root.mkdir(parents=True, exist_ok=True)
    quoted = ", ".join(f'"{m}"' for m in members)
    (root / "Cargo.toml").write_text(f"[workspace]\nmembers = [{quoted}]\n", encoding="utf-8")
    for member in members:
        if "*" in member:
            continue
        write_crate(root / member, name=member.rsplit("/", 1)[-1])
    return root


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with the cache rooted in a temporary directory."""
    return Settings(cache=CacheCfg(root=tmp_path / "cache"))


@pytest.fixture
def store(settings) -> CacheStore:
    return CacheStore(settings.cache.root)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def demo_crate(tmp_path) -> Path:
    """Local fixture crate demo-crate 1.0.0 with one public function."""
    return write_crate(tmp_path / "fixtures" / "demo-crate")


@pytest.fixture
def sample_docs() -> dict:
    return rustdoc_json()


@pytest.fixture
def runner_factory():
    """FakeRunner class, for tests that need non-default behaviour."""
    return FakeRunner


@pytest.fixture
def crate_factory():
    return write_crate


@pytest.fixture
def workspace_factory():
    return write_workspace


@pytest.fixture
def metadata_factory():
    return cargo_metadata_json
