"""
rustdoc JSON generation.

Runs `cargo +<toolchain> rustdoc ... --output-format json` inside a cached
source tree, walking the feature strategies until one builds, then copies the
artifact into the cache next to the recorded `cargo metadata` output.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional

from crate_docs.config.settings import Settings
from crate_docs.errors import (
    CacheIOError,
    GenerationError,
    InvalidInputError,
    NotFoundError,
    OperationTimeoutError,
    ToolchainMissingError,
)
from crate_docs.persist import (
    CacheStore,
    CrateIdentifier,
    MemberInfo,
    normalize_member_path,
)
from crate_docs.persist.paths import CARGO_TOML
from crate_docs.process import CommandResult, CommandRunner, run_command

from .artifact import DocArtifact
from .dependencies import DependencyRecord, parse_dependencies
from .strategies import (
    STRATEGIES,
    FailureKind,
    build_rustdoc_command,
    classify_failure,
    excerpt,
    is_retryable,
)
from .workspace import WorkspaceResolver

logger = logging.getLogger(__name__)


def find_json_doc(doc_dir: Path, package: str) -> Path:
    """
    Locate the rustdoc JSON file for a package.

    Tries target/doc/<package with - replaced by _>.json, then any *.json.

    Raises:
        GenerationError: If no JSON file was produced
    """
    expected = doc_dir / f"{package.replace('-', '_')}.json"
    if expected.is_file():
        return expected

    if doc_dir.is_dir():
        candidates = sorted(doc_dir.glob("*.json"))
        if candidates:
            logger.debug(f"Using {candidates[0].name} for package {package}")
            return candidates[0]

    raise GenerationError(
        f"No rustdoc JSON found for {package} in {doc_dir}",
        reason="missing_artifact",
    )


class DocGenerator:
    """
    Generate and persist documentation for cached crates.

    Uses the configured nightly toolchain; the check is done once per
    generator instance.
    """

    def __init__(
        self,
        store: CacheStore,
        settings: Optional[Settings] = None,
        runner: CommandRunner = run_command,
        workspace: Optional[WorkspaceResolver] = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.runner = runner
        self.workspace = workspace or WorkspaceResolver()
        self._toolchain_ok = False

    @property
    def toolchain(self) -> str:
        return self.settings.generation.toolchain

    async def validate_toolchain(self) -> None:
        """
        Check that the required toolchain is installed.

        Raises:
            ToolchainMissingError: If rustup is absent or the toolchain is not listed
        """
        if self._toolchain_ok:
            return

        hint = f"Please run: rustup toolchain install {self.toolchain}"
        try:
            result = await self.runner(
                ["rustup", "toolchain", "list"],
                timeout=self.settings.generation.toolchain_check_timeout_secs,
            )
        except FileNotFoundError as e:
            raise ToolchainMissingError("rustup is not installed", hint=hint) from e

        installed = [line.split()[0] for line in result.stdout.splitlines() if line.strip()]
        if not result.ok or not any(tc.startswith(self.toolchain) for tc in installed):
            raise ToolchainMissingError(
                f"Required toolchain {self.toolchain} is not installed",
                hint=hint,
            )
        self._toolchain_ok = True

    async def generate_docs(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> Path:
        """
        Generate rustdoc JSON for a crate or workspace member.

        Args:
            crate_id: Cached crate
            member: Workspace member path, if documenting a member

        Returns:
            Path to the cached docs.json

        Raises:
            NotFoundError: If the crate source is not cached
            ToolchainMissingError: If the toolchain is not installed
            GenerationError: If every strategy fails or the failure is fatal
            OperationTimeoutError: If an attempt exceeds the time limit
        """
        source_dir = self.store.source_path(crate_id)
        if not source_dir.is_dir():
            raise NotFoundError(f"Source for {crate_id} is not cached")

        await self.validate_toolchain()

        target = f"{crate_id} member {member}" if member else str(crate_id)
        if member:
            package = await asyncio.to_thread(self.workspace.resolve_member, source_dir, member)
            package_arg: Optional[str] = package
        else:
            if await asyncio.to_thread(self.workspace.is_workspace, source_dir):
                members = await asyncio.to_thread(self.workspace.get_workspace_members, source_dir)
                raise GenerationError(
                    f"{crate_id} is a workspace; documentation must be generated per member",
                    hint=f"Specify one of the members: {', '.join(members.members) or '(none declared)'}",
                    reason="workspace",
                )
            package = await asyncio.to_thread(self._package_name_or_default, source_dir, crate_id.name)
            package_arg = None

        logger.info(f"Generating documentation for {target}")
        doc_dir = self.store.paths(crate_id).target_doc_dir
        artifact = await self._run_rustdoc(target, source_dir, doc_dir, package, package_arg)

        # docs.json, dependencies.json and metadata.json land together or not at all
        docs_path = self.store.docs_path(crate_id, member)
        try:
            await self.generate_dependencies(crate_id, member)
            await asyncio.to_thread(self._store_artifact, target, artifact, docs_path)
            await asyncio.to_thread(self._restamp, crate_id, member, package)
        except BaseException:
            self._discard_outputs(crate_id, member)
            raise

        logger.info(f"Documentation for {target} stored at {docs_path}")
        return docs_path

    async def _run_rustdoc(
        self,
        target: str,
        source_dir: Path,
        doc_dir: Path,
        package: str,
        package_arg: Optional[str],
    ) -> Path:
        cfg = self.settings.generation
        attempts: list[str] = []
        lib_only = False

        for strategy in STRATEGIES:
            while True:
                args = build_rustdoc_command(self.toolchain, package_arg, strategy, lib_only)
                result = await self._cargo(target, args, source_dir, cfg.timeout_secs)
                if result.ok:
                    logger.info(f"rustdoc succeeded for {target} with {strategy.name}")
                    return find_json_doc(doc_dir, package)

                kind = classify_failure(result.stderr)
                if kind == FailureKind.MULTIPLE_TARGETS and not lib_only:
                    logger.info(f"{target} has multiple targets; retrying with --lib")
                    lib_only = True
                    continue
                break

            label = f"{strategy.name}{' --lib' if lib_only else ''}"
            attempts.append(f"[{label}] {excerpt(result.stderr, cfg.max_excerpt_chars)}")

            if kind == FailureKind.BINARY_ONLY:
                raise GenerationError(
                    f"{target} has no library target; only library crates can be documented",
                    reason="binary_only",
                )
            if kind == FailureKind.WORKSPACE_MISUSE:
                raise GenerationError(
                    f"{target} looks like a workspace root: {attempts[-1]}",
                    hint="Cache the workspace members individually",
                    reason="workspace",
                )
            if not is_retryable(kind):
                raise GenerationError(
                    f"rustdoc failed for {target}: {attempts[-1]}",
                    reason="failed",
                )
            logger.warning(f"rustdoc {strategy.name} failed for {target}; trying next strategy")

        raise GenerationError(
            f"rustdoc failed for {target} with every feature strategy:\n" + "\n".join(attempts),
            hint="The crate may need system libraries or a different toolchain",
            reason="exhausted",
        )

    async def _cargo(self, target: str, args: list[str], cwd: Path, timeout: float) -> CommandResult:
        try:
            return await self.runner(args, cwd=cwd, timeout=timeout)
        except FileNotFoundError as e:
            raise ToolchainMissingError(
                "cargo is not installed",
                hint=f"Install Rust and run: rustup toolchain install {self.toolchain}",
            ) from e
        except OperationTimeoutError as e:
            raise OperationTimeoutError(
                f"{' '.join(args[:3])} for {target} timed out after {timeout:.0f}s",
                hint=e.hint,
            ) from e

    async def generate_dependencies(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> Path:
        """
        Store raw `cargo metadata --format-version 1` output.

        Returns:
            Path to dependencies.json
        """
        source_dir = self.store.source_path(crate_id)
        target = f"{crate_id} member {member}" if member else str(crate_id)
        args = ["cargo", "metadata", "--format-version", "1"]
        if member:
            args.extend(["--manifest-path", str(source_dir / member / CARGO_TOML)])

        result = await self._cargo(target, args, source_dir, self.settings.generation.metadata_timeout_secs)
        if not result.ok:
            raise GenerationError(
                f"cargo metadata failed for {target}: "
                f"{excerpt(result.stderr, self.settings.generation.max_excerpt_chars)}",
                reason="metadata",
            )
        return self.store.save_dependencies(crate_id, result.stdout, member)

    def load_artifact(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> DocArtifact:
        """Parse cached docs.json into a DocArtifact."""
        return DocArtifact(self.store.load_docs(crate_id, member))

    def load_dependencies(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> list[DependencyRecord]:
        """Dependency records for a crate or member from cached metadata."""
        metadata = self.store.load_dependencies(crate_id, member)
        source_dir = self.store.source_path(crate_id)
        manifest_dir = source_dir / member if member else source_dir
        package = self._package_name_or_default(manifest_dir, crate_id.name)
        version = None if member else crate_id.version
        return parse_dependencies(metadata, package, version)

    def _package_name_or_default(self, path: Path, default: str) -> str:
        try:
            return self.workspace.get_package_name(path)
        except (InvalidInputError, NotFoundError):
            return default

    def _store_artifact(self, target: str, artifact: Path, docs_path: Path) -> None:
        try:
            self.store.ensure_dir(docs_path.parent)
            shutil.copy2(artifact, docs_path)
        except OSError as e:
            raise CacheIOError(f"Failed to store documentation for {target}: {e}") from e

    def _discard_outputs(self, crate_id: CrateIdentifier, member: Optional[str]) -> None:
        """Drop docs.json and dependencies.json left by an incomplete generation."""
        for path in (self.store.docs_path(crate_id, member), self.store.dependencies_path(crate_id, member)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")

    def _restamp(self, crate_id: CrateIdentifier, member: Optional[str], package: str) -> None:
        root = self.store.load_metadata(crate_id)
        source = root.source if root else "crates.io"
        source_path = root.source_path if root else None

        member_info = None
        if member:
            member_info = MemberInfo(
                original_path=member,
                normalized_path=normalize_member_path(member),
                package_name=package,
            )
        self.store.stamp_metadata(crate_id, source, source_path, member_info)
