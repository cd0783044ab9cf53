"""
Async caching worker - drives one CachingTask through the pipeline.

Stages: download source, generate docs (per member), build search index.
Cancellation is checked between stages and between members; a cancelled or
failed task leaves the cache as it was before the task started.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from crate_docs.errors import TaskCancelledError
from crate_docs.persist import CacheTransaction, CrateIdentifier
from crate_docs.sources import detect_source

from .tasks import CachingStage, CachingTask, TaskStatus

if TYPE_CHECKING:
    from crate_docs.service import CrateDocsService

logger = logging.getLogger(__name__)


def _target_label(crate_id: CrateIdentifier, member: Optional[str]) -> str:
    return f"{crate_id} member {member}" if member else str(crate_id)


async def run_cache_task(task: CachingTask, service: "CrateDocsService") -> None:
    """
    Run a caching task to completion, failure or cancellation.

    Steps:
        1. Download (or copy) the crate source
        2. Generate rustdoc JSON for the crate or each requested member
        3. Index the generated items
        4. Commit the update (when replacing an existing entry)

    Args:
        task: Task snapshot; its cancellation token is shared with the manager
        service: Service providing store, downloader, generator and index
    """
    manager = service.tasks
    token = task.cancellation
    crate_id = CrateIdentifier(task.crate_name, task.version)
    existed = service.store.crate_path(crate_id).exists()
    txn = CacheTransaction(service.store, crate_id) if task.update else None

    try:
        token.raise_if_cancelled()
        if txn is not None:
            await asyncio.to_thread(txn.begin)
            await asyncio.to_thread(service.search_index.remove_crate, crate_id.name, crate_id.version)

        # Step 1: Download
        manager.update_stage(task.task_id, CachingStage.DOWNLOADING)
        await service.downloader.download_or_copy(crate_id, detect_source(task.source_details))
        token.raise_if_cancelled()

        # Step 2: Generate docs
        targets = await service.resolve_targets(crate_id, task.members)
        manager.update_stage(task.task_id, CachingStage.GENERATING_DOCS, total_steps=len(targets))
        for step, member in enumerate(targets, start=1):
            manager.update_step(task.task_id, step, f"Generating docs for {_target_label(crate_id, member)}")
            if task.update or not service.store.has_docs(crate_id, member):
                await service.generator.generate_docs(crate_id, member)
            token.raise_if_cancelled()

        # Step 3: Index
        manager.update_stage(task.task_id, CachingStage.INDEXING, total_steps=len(targets))
        for step, member in enumerate(targets, start=1):
            manager.update_step(task.task_id, step, f"Indexing {_target_label(crate_id, member)}")
            await service.index_crate(crate_id, member)
            token.raise_if_cancelled()

        # Step 4: Commit
        if txn is not None:
            await asyncio.to_thread(txn.commit)
        manager.update_stage(task.task_id, CachingStage.COMPLETED)
        manager.update_status(task.task_id, TaskStatus.COMPLETED)
        logger.info(f"Task {task.task_id} cached {crate_id}")

    except TaskCancelledError:
        logger.info(f"Task {task.task_id} cancelled; cleaning up {crate_id}")
        await _clean_up(service, crate_id, txn, existed)
        manager.update_status(task.task_id, TaskStatus.CANCELLED)

    except Exception as e:
        await _clean_up(service, crate_id, txn, existed)
        manager.set_error(task.task_id, str(e))


async def _clean_up(
    service: "CrateDocsService",
    crate_id: CrateIdentifier,
    txn: Optional[CacheTransaction],
    existed: bool,
) -> None:
    """Restore the pre-task cache state and drop any documents indexed meanwhile."""
    if txn is not None:
        await asyncio.to_thread(txn.rollback)
    elif not existed:
        await asyncio.to_thread(service.store.remove_crate, crate_id)
    else:
        return
    await asyncio.to_thread(service.search_index.remove_crate, crate_id.name, crate_id.version)
