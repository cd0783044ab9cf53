"""
Crate source acquisition.

Fetches a crate's source tree into the cache from the crates.io registry
(streamed .crate archive), a git repository (clone + ref checkout) or a
local directory (recursive copy). Partial results are removed on failure.
"""

import asyncio
import logging
import os
import shutil
import tarfile
import tempfile
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from crate_docs.config.settings import Settings
from crate_docs.errors import (
    CacheIOError,
    CrateDocsError,
    InvalidInputError,
    NotFoundError,
    OperationTimeoutError,
    UpstreamError,
)
from crate_docs.persist import (
    SOURCE_GITHUB,
    SOURCE_LOCAL,
    SOURCE_REGISTRY,
    CacheStore,
    CrateIdentifier,
    copy_directory_contents,
    validate_member_path,
)
from crate_docs.persist.paths import CARGO_TOML
from crate_docs.process import CommandRunner, run_command

from .detect import GitReference, SourceKind, SourceSpec

logger = logging.getLogger(__name__)

_GIT_REF_CHARS = set("-_./+")


def validate_git_ref(ref: str) -> str:
    """
    Reject branch/tag names that git would refuse or that could be read as options.

    Raises:
        InvalidInputError: For empty, "..", leading/trailing "." or "/", or odd characters
    """
    if not ref:
        raise InvalidInputError("Git reference cannot be empty")
    if ".." in ref:
        raise InvalidInputError(f"Invalid git reference '{ref}': contains '..'")
    if ref[0] in "./-" or ref[-1] in "./":
        raise InvalidInputError(f"Invalid git reference '{ref}'")
    if not all(c.isalnum() or c in _GIT_REF_CHARS for c in ref):
        raise InvalidInputError(
            f"Invalid git reference '{ref}'",
            hint="Branch and tag names may contain letters, digits and - _ . / +",
        )
    return ref


def extract_crate_archive(archive_path: Path, dest: Path) -> int:
    """
    Extract a .crate (tar.gz) archive, stripping its top-level directory.

    Entries that are absolute, contain "..", or are neither regular files nor
    directories are skipped.

    Args:
        archive_path: Path to the downloaded archive
        dest: Destination directory

    Returns:
        Number of files written
    """
    dest.mkdir(parents=True, exist_ok=True)
    dest_root = dest.resolve()
    written = 0

    with tarfile.open(archive_path, "r:gz") as tar:
        for member in tar.getmembers():
            parts = PurePosixPath(member.name).parts
            if len(parts) < 2 or member.name.startswith("/"):
                continue
            if any(part == ".." for part in parts[1:]):
                logger.warning(f"Skipping archive entry with '..': {member.name}")
                continue

            target = dest.joinpath(*parts[1:])
            if not target.resolve().is_relative_to(dest_root):
                logger.warning(f"Skipping archive entry outside destination: {member.name}")
                continue

            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                fileobj = tar.extractfile(member)
                if fileobj is None:
                    continue
                with fileobj, open(target, "wb") as f:
                    shutil.copyfileobj(fileobj, f)
                written += 1

    return written


class CrateDownloader:
    """
    Acquire crate sources into a CacheStore.

    All three strategies skip work when the crate is already cached and stamp
    metadata.json on success.
    """

    def __init__(
        self,
        store: CacheStore,
        settings: Optional[Settings] = None,
        runner: CommandRunner = run_command,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize downloader.

        Args:
            store: Cache store to populate
            settings: Application settings
            runner: Subprocess runner used for git
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.store = store
        self.settings = settings or Settings()
        self.runner = runner
        self.transport = transport

    async def download_or_copy(self, crate_id: CrateIdentifier, source: SourceSpec) -> Path:
        """
        Acquire a crate from whichever origin its source describes.

        Returns:
            Path to the cached source tree
        """
        if self.store.is_cached(crate_id):
            logger.debug(f"{crate_id} already cached")
            return self.store.source_path(crate_id)

        if source.kind == SourceKind.GIT:
            return await self.download_git(crate_id, source)
        if source.kind == SourceKind.LOCAL:
            return await self.copy_local(crate_id, source)
        return await self.download_crate(crate_id)

    # --------------------------------------------------------------- registry

    async def download_crate(self, crate_id: CrateIdentifier) -> Path:
        """
        Stream a crate archive from the registry and extract it.

        Raises:
            UpstreamError: On a non-success status or transport failure
            OperationTimeoutError: If the download exceeds the HTTP timeout
        """
        source_dir = self.store.source_path(crate_id)
        if self.store.is_cached(crate_id):
            return source_dir

        cfg = self.settings.http
        url = f"{cfg.registry_url}/{crate_id.name}/{crate_id.version}/download"
        tmp_file = Path(tempfile.gettempdir()) / (
            f"{crate_id}-{os.getpid()}-{uuid.uuid4().hex}.tar.gz"
        )
        existed = self.store.crate_path(crate_id).exists()

        logger.info(f"Downloading {crate_id} from {url}")
        try:
            await self._fetch_to_file(crate_id, url, tmp_file)
            await asyncio.to_thread(self.store.ensure_dir, source_dir)
            count = await asyncio.to_thread(extract_crate_archive, tmp_file, source_dir)
            logger.info(f"Extracted {count} files for {crate_id}")
            await asyncio.to_thread(self.store.stamp_metadata, crate_id, SOURCE_REGISTRY)
        except CrateDocsError:
            await self._discard_partial(crate_id, existed)
            raise
        except (OSError, tarfile.TarError) as e:
            await self._discard_partial(crate_id, existed)
            raise UpstreamError(f"Failed to extract {crate_id}: {e}") from e
        finally:
            tmp_file.unlink(missing_ok=True)

        return source_dir

    async def _fetch_to_file(self, crate_id: CrateIdentifier, url: str, dest: Path) -> None:
        cfg = self.settings.http
        client_kwargs = {
            "headers": {"User-Agent": cfg.user_agent},
            "follow_redirects": True,
            "max_redirects": cfg.max_redirects,
            "timeout": cfg.timeout_secs,
        }
        if self.transport is not None:
            client_kwargs["transport"] = self.transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        hint = None
                        if response.status_code == 404:
                            hint = f"Check that version {crate_id.version} of {crate_id.name} exists on crates.io"
                        raise UpstreamError(
                            f"Failed to download {crate_id}: HTTP {response.status_code}",
                            hint=hint,
                        )
                    with open(dest, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError(f"Timed out downloading {crate_id}: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to download {crate_id}: {e}") from e

    # -------------------------------------------------------------------- git

    async def download_git(self, crate_id: CrateIdentifier, source: SourceSpec) -> Path:
        """
        Clone a repository, check out the requested ref and copy the crate.

        Raises:
            UpstreamError: If clone fails or the ref does not resolve
            NotFoundError: If the resolved path has no Cargo.toml
        """
        if not source.url:
            raise InvalidInputError("Git source requires a repository URL")
        if source.repo_path:
            validate_member_path(source.repo_path)

        source_dir = self.store.source_path(crate_id)
        if self.store.is_cached(crate_id):
            return source_dir

        clone_dir = Path(tempfile.gettempdir()) / f"crate-docs-git-{crate_id.name}-{crate_id.version}"
        existed = self.store.crate_path(crate_id).exists()

        try:
            if clone_dir.exists():
                await asyncio.to_thread(shutil.rmtree, clone_dir)

            await self._clone(crate_id, source.url, clone_dir)
            if not source.reference.is_default:
                await self._checkout_ref(crate_id, clone_dir, source.reference)

            crate_root = clone_dir / source.repo_path if source.repo_path else clone_dir
            if not (crate_root / CARGO_TOML).is_file():
                location = source.repo_path or "repository root"
                raise NotFoundError(
                    f"No {CARGO_TOML} found at {location} in {source.url}",
                    hint="Point the URL at the directory holding the crate's Cargo.toml",
                )

            await asyncio.to_thread(copy_directory_contents, crate_root, source_dir)
            await asyncio.to_thread(self.store.stamp_metadata, crate_id, SOURCE_GITHUB, source.detail)
        except CrateDocsError:
            await self._discard_partial(crate_id, existed)
            raise
        except OSError as e:
            await self._discard_partial(crate_id, existed)
            raise CacheIOError(f"Failed to copy {crate_id} from {source.url}: {e}") from e
        finally:
            await asyncio.to_thread(shutil.rmtree, clone_dir, ignore_errors=True)

        logger.info(f"Cached {crate_id} from {source.detail}")
        return source_dir

    async def _git(self, args: list[str], cwd: Optional[Path] = None):
        try:
            return await self.runner(
                ["git", *args],
                cwd=cwd,
                timeout=self.settings.git.timeout_secs,
                env={"GIT_TERMINAL_PROMPT": "0"},
            )
        except FileNotFoundError as e:
            raise UpstreamError("git is not installed", hint="Install git and retry") from e

    async def _clone(self, crate_id: CrateIdentifier, url: str, clone_dir: Path) -> None:
        clone_url = url
        token = os.environ.get(self.settings.git.token_env)
        if token and url.startswith("https://github.com/"):
            clone_url = url.replace("https://", f"https://x-access-token:{token}@", 1)

        logger.info(f"Cloning {url} for {crate_id}")
        result = await self._git(["clone", "--quiet", clone_url, str(clone_dir)])
        if not result.ok:
            stderr = result.stderr.strip()
            if token:
                stderr = stderr.replace(token, "***")
            raise UpstreamError(
                f"Failed to clone {url}: {stderr}",
                hint=f"For private repositories set {self.settings.git.token_env}",
            )

    async def _checkout_ref(self, crate_id: CrateIdentifier, clone_dir: Path, reference: GitReference) -> str:
        ref = validate_git_ref(reference.name or "")

        commit = None
        for candidate in (f"refs/remotes/origin/{ref}", f"refs/tags/{ref}"):
            result = await self._git(["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"], cwd=clone_dir)
            if result.ok and result.stdout.strip():
                commit = result.stdout.strip()
                break

        if commit is None:
            raise UpstreamError(
                f"Could not find branch or tag '{ref}' for {crate_id}",
                hint="Check the branch or tag name in the repository",
            )

        result = await self._git(["checkout", "--quiet", "--force", "--detach", commit], cwd=clone_dir)
        if not result.ok:
            raise UpstreamError(f"Failed to check out '{ref}': {result.stderr.strip()}")

        logger.debug(f"Checked out {ref} at {commit[:12]}")
        return commit

    # ------------------------------------------------------------------ local

    async def copy_local(self, crate_id: CrateIdentifier, source: SourceSpec) -> Path:
        """
        Copy a crate from a local directory.

        Raises:
            NotFoundError: If the path does not exist or lacks Cargo.toml
        """
        raw = source.local_path or ""
        local_dir = Path(os.path.expandvars(os.path.expanduser(raw)))
        if not local_dir.exists():
            raise NotFoundError(f"Local path does not exist: {raw}")
        if not (local_dir / CARGO_TOML).is_file():
            raise NotFoundError(
                f"No {CARGO_TOML} found in {raw}",
                hint="Local sources must point at a crate or workspace root",
            )

        source_dir = self.store.source_path(crate_id)
        if self.store.is_cached(crate_id):
            return source_dir

        existed = self.store.crate_path(crate_id).exists()
        try:
            await asyncio.to_thread(copy_directory_contents, local_dir, source_dir)
            await asyncio.to_thread(self.store.stamp_metadata, crate_id, SOURCE_LOCAL, raw)
        except CrateDocsError:
            await self._discard_partial(crate_id, existed)
            raise
        except OSError as e:
            await self._discard_partial(crate_id, existed)
            raise CacheIOError(f"Failed to copy {crate_id} from {raw}: {e}") from e

        logger.info(f"Cached {crate_id} from local path {raw}")
        return source_dir

    async def _discard_partial(self, crate_id: CrateIdentifier, existed: bool) -> None:
        if existed:
            return
        path = self.store.crate_path(crate_id)
        if path.exists():
            await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
            logger.debug(f"Removed partial download for {crate_id}")
