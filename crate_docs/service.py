"""
Crate documentation service.

Composition root wiring the cache store, source downloader, doc generator,
search index and task manager together. One service value is created by the
caller and passed to whatever exposes the operations; there is no global
instance.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional, Union

import httpx

from crate_docs.config.settings import Settings, load_settings
from crate_docs.docgen import (
    DependencyRecord,
    DocArtifact,
    DocGenerator,
    ItemDetails,
    ItemInfo,
    ItemSource,
    WorkspaceResolver,
)
from crate_docs.errors import CrateDocsError, GenerationError, NotFoundError
from crate_docs.index import SearchIndex, SearchResult
from crate_docs.ops.cache_worker import run_cache_task
from crate_docs.ops.tasks import CachingTask, TaskManager, TaskStatus
from crate_docs.persist import (
    CacheStore,
    CacheTransaction,
    CrateIdentifier,
    format_bytes,
    validate_member_path,
)
from crate_docs.persist.paths import CARGO_TOML, SEARCH_INDEX_DIR
from crate_docs.process import CommandRunner, run_command
from crate_docs.schemas import CachedCrateView, CacheListing, CacheResponse
from crate_docs.sources import CrateDownloader, SourceSpec, detect_source

logger = logging.getLogger(__name__)

SourceArg = Union[str, SourceSpec, None]


def _as_spec(source: SourceArg) -> SourceSpec:
    if isinstance(source, SourceSpec):
        return source
    return detect_source(source)


class CrateDocsService:
    """
    High-level cache, generation and search operations.

    Example:
        >>> service = CrateDocsService()
        >>> crate_id = CrateIdentifier("serde", "1.0.210")
        >>> artifact = await service.ensure_docs(crate_id)
        >>> hits = await service.search(crate_id, "Serialize")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: CommandRunner = run_command,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize service.

        Args:
            settings: Application settings (defaults from load_settings())
            runner: Subprocess runner for git/cargo/rustup
            transport: Optional httpx transport for registry downloads
        """
        self.settings = settings or load_settings()
        self.store = CacheStore(self.settings.cache.root)
        self.workspace = WorkspaceResolver()
        self.downloader = CrateDownloader(self.store, self.settings, runner, transport)
        self.generator = DocGenerator(self.store, self.settings, runner, self.workspace)
        self.tasks = TaskManager()
        self._search_index: Optional[SearchIndex] = None
        self._index_lock = threading.Lock()

    @property
    def search_index(self) -> SearchIndex:
        """Search index, opened on first use."""
        with self._index_lock:
            if self._search_index is None:
                index_dir = self.store.root / SEARCH_INDEX_DIR
                self._search_index = SearchIndex(index_dir, self.settings.search)
            return self._search_index

    # ----------------------------------------------------------- acquisition

    async def ensure_source(
        self,
        crate_id: CrateIdentifier,
        member: Optional[str] = None,
        source: SourceArg = None,
    ) -> Path:
        """
        Make sure a crate's source is cached.

        Args:
            crate_id: Crate identifier
            member: Workspace member path; its directory is returned
            source: Source descriptor (registry when None)

        Returns:
            Path to the cached source (or member) directory
        """
        source_dir = await self.downloader.download_or_copy(crate_id, _as_spec(source))
        if member is None:
            return source_dir

        validate_member_path(member)
        member_dir = source_dir / member
        if not (member_dir / CARGO_TOML).is_file():
            raise NotFoundError(f"Workspace member '{member}' not found in {crate_id}")
        return member_dir

    async def ensure_docs(
        self,
        crate_id: CrateIdentifier,
        member: Optional[str] = None,
        source: SourceArg = None,
    ) -> DocArtifact:
        """
        Return a crate's documentation, acquiring and generating it if needed.

        A crate downloaded by this call is removed again if generation fails.

        Returns:
            DocArtifact for the crate or member
        """
        if not self.store.has_docs(crate_id, member):
            existed = self.store.is_cached(crate_id)
            try:
                await self.ensure_source(crate_id, member, source)
                await self.generator.generate_docs(crate_id, member)
            except CrateDocsError:
                if not existed:
                    await asyncio.to_thread(self.store.remove_crate, crate_id)
                raise

        return await asyncio.to_thread(self.generator.load_artifact, crate_id, member)

    async def get_dependencies(
        self,
        crate_id: CrateIdentifier,
        member: Optional[str] = None,
    ) -> list[DependencyRecord]:
        """Dependency records of a cached crate or member."""
        await self.ensure_docs(crate_id, member)
        return await asyncio.to_thread(self.generator.load_dependencies, crate_id, member)

    # ---------------------------------------------------------- item queries

    async def search_items(
        self,
        crate_id: CrateIdentifier,
        pattern: str,
        kind: Optional[str] = None,
        path_prefix: Optional[str] = None,
        member: Optional[str] = None,
    ) -> list[ItemInfo]:
        """Items whose name contains pattern, exact and prefix matches first."""
        artifact = await self.ensure_docs(crate_id, member)
        return artifact.search_items(pattern, kind, path_prefix)

    async def get_item_docs(
        self,
        crate_id: CrateIdentifier,
        item_id: str,
        member: Optional[str] = None,
    ) -> Optional[str]:
        artifact = await self.ensure_docs(crate_id, member)
        return artifact.get_item_docs(item_id)

    async def get_item_details(
        self,
        crate_id: CrateIdentifier,
        item_id: str,
        member: Optional[str] = None,
    ) -> ItemDetails:
        artifact = await self.ensure_docs(crate_id, member)
        return artifact.get_item_details(item_id)

    async def get_item_source(
        self,
        crate_id: CrateIdentifier,
        item_id: str,
        context_lines: int = 3,
        member: Optional[str] = None,
    ) -> ItemSource:
        """
        Source code of an item with surrounding context lines.

        Span filenames are relative to the crate's cached source tree, for
        members too, since cargo runs from the workspace root.
        """
        artifact = await self.ensure_docs(crate_id, member)
        return await asyncio.to_thread(
            artifact.get_item_source, item_id, self.store.source_path(crate_id), context_lines
        )

    async def resolve_targets(
        self,
        crate_id: CrateIdentifier,
        members: Optional[list[str]] = None,
    ) -> list[Optional[str]]:
        """
        Decide what to document: the requested members, or the root crate.

        Raises:
            GenerationError: If the root is a workspace and no members were given
        """
        if members:
            for member in members:
                validate_member_path(member)
            return list(members)

        source_dir = self.store.source_path(crate_id)
        if await asyncio.to_thread(self.workspace.is_workspace, source_dir):
            ws = await asyncio.to_thread(self.workspace.get_workspace_members, source_dir)
            raise GenerationError(
                f"{crate_id} is a workspace; specify which members to cache",
                hint=f"Available members: {', '.join(ws.members) or '(none)'}",
                reason="workspace",
            )
        return [None]

    # ------------------------------------------------------------- caching

    async def cache_crate(
        self,
        crate_id: CrateIdentifier,
        source: SourceArg = None,
        members: Optional[list[str]] = None,
        update: bool = False,
    ) -> CacheResponse:
        """
        Cache a crate (or selected workspace members) and generate docs.

        With update=True the existing entry is replaced inside a
        CacheTransaction and restored if anything fails.

        Returns:
            CacheResponse describing the outcome
        """
        spec = _as_spec(source)
        try:
            if update:
                await asyncio.to_thread(self.search_index.remove_crate, crate_id.name, crate_id.version)
                txn = CacheTransaction(self.store, crate_id)
                await asyncio.to_thread(txn.begin)
                try:
                    response = await self._cache_pipeline(crate_id, spec, members, updated=True)
                except BaseException:
                    await asyncio.to_thread(txn.rollback)
                    raise
                await asyncio.to_thread(txn.commit)
                return response

            existed = self.store.crate_path(crate_id).exists()
            try:
                return await self._cache_pipeline(crate_id, spec, members, updated=False)
            except CrateDocsError:
                if not existed:
                    await asyncio.to_thread(self.store.remove_crate, crate_id)
                raise
        except CrateDocsError as e:
            logger.error(f"Failed to cache {crate_id}: {e}")
            return CacheResponse.error(crate_id.name, crate_id.version, str(e))

    async def _cache_pipeline(
        self,
        crate_id: CrateIdentifier,
        spec: SourceSpec,
        members: Optional[list[str]],
        updated: bool,
    ) -> CacheResponse:
        source_dir = await self.downloader.download_or_copy(crate_id, spec)

        if members:
            succeeded: list[str] = []
            errors: dict[str, str] = {}
            for member in members:
                try:
                    await self.ensure_docs(crate_id, member)
                    succeeded.append(member)
                except CrateDocsError as e:
                    logger.warning(f"Failed to cache member {member} of {crate_id}: {e}")
                    errors[member] = str(e)
            if not succeeded:
                raise GenerationError(
                    f"Failed to cache any requested member of {crate_id}: "
                    + "; ".join(f"{m}: {err}" for m, err in errors.items()),
                    reason="members",
                )
            return CacheResponse.members_result(crate_id.name, crate_id.version, succeeded, errors)

        if await asyncio.to_thread(self.workspace.is_workspace, source_dir):
            ws = await asyncio.to_thread(self.workspace.get_workspace_members, source_dir)
            return CacheResponse.workspace_detected(
                crate_id.name, crate_id.version, ws.members, ws.skipped
            )

        await self.ensure_docs(crate_id)
        return CacheResponse.success(crate_id.name, crate_id.version, updated=updated)

    # ---------------------------------------------------------------- tasks

    def start_caching_task(
        self,
        crate_id: CrateIdentifier,
        source: Optional[str] = None,
        members: Optional[list[str]] = None,
        update: bool = False,
    ) -> CachingTask:
        """
        Start caching in the background; must be called from a running loop.

        Returns:
            Snapshot of the new task (poll with get_task)

        Raises:
            RuntimeError: If called outside a running event loop
        """
        asyncio.get_running_loop()
        spec = _as_spec(source)
        task = self.tasks.create_task(
            crate_id.name,
            crate_id.version,
            spec.kind.value,
            source_details=source,
            members=members,
            update=update,
        )
        self.tasks.submit(task, lambda t: run_cache_task(t, self))
        return task

    def get_task(self, task_id: str) -> Optional[CachingTask]:
        return self.tasks.get_task(task_id)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[CachingTask]:
        return self.tasks.list_tasks(status)

    def cancel_task(self, task_id: str) -> Optional[CachingTask]:
        return self.tasks.cancel_task(task_id)

    def clear_tasks(self) -> list[CachingTask]:
        return self.tasks.clear_terminal_tasks()

    # --------------------------------------------------------------- queries

    def list_versions(self, name: str) -> list[str]:
        """Cached versions of a crate."""
        return self.store.list_versions(name)

    def list_cached_crates(self) -> CacheListing:
        """Every cached crate version with sizes and members."""
        views = []
        for cached in self.store.list_cached_crates():
            meta = cached.metadata
            views.append(
                CachedCrateView(
                    name=meta.name,
                    version=meta.version,
                    cached_at=meta.cached_at.isoformat(),
                    doc_generated=meta.doc_generated,
                    size_bytes=meta.size_bytes,
                    size_human=format_bytes(meta.size_bytes),
                    source=meta.source,
                    source_path=meta.source_path,
                    members=cached.members,
                )
            )
        total = sum(v.size_bytes for v in views)
        return CacheListing(
            crates=views,
            total_count=len(views),
            total_size_bytes=total,
            total_size_human=format_bytes(total),
        )

    async def remove(self, crate_id: CrateIdentifier) -> bool:
        """
        Remove a crate version from the cache and the search index.

        Returns:
            True if the crate was cached
        """
        removed = await asyncio.to_thread(self.store.remove_crate, crate_id)
        await asyncio.to_thread(self.search_index.remove_crate, crate_id.name, crate_id.version)
        logger.info(f"Removed {crate_id}" if removed else f"{crate_id} was not cached")
        return removed

    # ---------------------------------------------------------------- search

    async def index_crate(self, crate_id: CrateIdentifier, member: Optional[str] = None) -> int:
        """Index (or re-index) a crate's documentation items."""
        artifact = await self.ensure_docs(crate_id, member)
        items = artifact.items()
        return await asyncio.to_thread(
            self.search_index.add_crate_items, crate_id.name, crate_id.version, items, member
        )

    async def _ensure_indexed(self, crate_id: CrateIdentifier, member: Optional[str]) -> None:
        index = self.search_index
        if member is not None:
            if not index.is_crate_indexed(crate_id.name, crate_id.version, member):
                await self.index_crate(crate_id, member)
            return

        cached_members = [
            m for m in self.store.list_workspace_members(crate_id)
            if self.store.has_docs(crate_id, m)
        ]
        if self.store.has_docs(crate_id) or not cached_members:
            if not index.is_crate_indexed(crate_id.name, crate_id.version):
                await self.index_crate(crate_id)
        for m in cached_members:
            if not index.is_crate_indexed(crate_id.name, crate_id.version, m):
                await self.index_crate(crate_id, m)

    async def search(
        self,
        crate_id: CrateIdentifier,
        query: str,
        fuzzy: bool = False,
        kind: Optional[str] = None,
        limit: Optional[int] = None,
        distance: Optional[int] = None,
        member: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Search a crate's documentation, indexing it on first use.

        Args:
            crate_id: Crate to search
            query: Query text
            fuzzy: Use typo-tolerant matching instead of boolean parsing
            kind: Keep only items of this kind
            limit: Maximum number of results
            distance: Edit distance for fuzzy mode
            member: Restrict to one workspace member

        Returns:
            Ranked SearchResult list
        """
        await self._ensure_indexed(crate_id, member)
        index = self.search_index
        if fuzzy:
            return await asyncio.to_thread(
                index.fuzzy_search, query, crate_id.name, crate_id.version,
                kind, limit, distance, member,
            )
        return await asyncio.to_thread(
            index.search, query, crate_id.name, crate_id.version, kind, limit, member
        )

    async def suggest(self, crate_id: CrateIdentifier, query: str, limit: int = 10) -> list[str]:
        """Item names similar to the query (for "did you mean" hints)."""
        await self._ensure_indexed(crate_id, None)
        return await asyncio.to_thread(
            self.search_index.suggest, query, crate_id.name, crate_id.version, limit
        )

    def close(self) -> None:
        """Release the search index."""
        with self._index_lock:
            if self._search_index is not None:
                self._search_index.close()
                self._search_index = None
