"""
Unit tests for crate_docs/service.py
"""
import threading

import pytest

from crate_docs.errors import GenerationError, InvalidInputError, NotFoundError
from crate_docs.persist import CrateIdentifier, storage
from crate_docs.service import CrateDocsService

pytestmark = pytest.mark.asyncio

CRATE_ID = CrateIdentifier("demo-crate", "1.0.0")
WS_ID = CrateIdentifier("ws", "main")


@pytest.fixture
def service(settings, fake_runner):
    svc = CrateDocsService(settings, runner=fake_runner)
    yield svc
    svc.close()


@pytest.fixture
def workspace(tmp_path, workspace_factory):
    return workspace_factory(tmp_path / "ws", ["crates/alpha", "crates/beta", "plugins/*"])


async def test_cache_crate_success(service, demo_crate):
    response = await service.cache_crate(CRATE_ID, source=str(demo_crate))

    assert response.status == "success"
    assert response.message == "Successfully cached demo-crate-1.0.0"
    assert service.store.has_docs(CRATE_ID)


async def test_cache_crate_update(service, demo_crate, fake_runner):
    await service.cache_crate(CRATE_ID, source=str(demo_crate))
    response = await service.cache_crate(CRATE_ID, source=str(demo_crate), update=True)

    assert response.status == "success_updated"
    assert len(fake_runner.rustdoc_calls) == 2
    assert service.store.has_docs(CRATE_ID)


async def test_cache_crate_workspace_detected(service, workspace):
    response = await service.cache_crate(WS_ID, source=str(workspace))

    assert response.status == "workspace_detected"
    assert response.members == ["crates/alpha", "crates/beta"]
    assert response.skipped_members == ["plugins/*"]
    assert 'members=["crates/alpha"]' in response.example_usage
    assert service.store.is_cached(WS_ID)


async def test_cache_crate_members(service, workspace):
    response = await service.cache_crate(
        WS_ID, source=str(workspace), members=["crates/alpha", "crates/missing"]
    )

    assert response.status == "members_partial"
    assert response.members == ["crates/alpha"]
    assert "crates/missing" in response.errors
    assert service.store.has_member_docs(WS_ID, "crates/alpha")


async def test_cache_crate_all_members_succeed(service, workspace):
    response = await service.cache_crate(
        WS_ID, source=str(workspace), members=["crates/alpha", "crates/beta"]
    )
    assert response.status == "members_success"
    assert response.errors == {}


async def test_cache_crate_error_response(settings, runner_factory, demo_crate):
    service = CrateDocsService(settings, runner=runner_factory(toolchain_installed=False))
    try:
        response = await service.cache_crate(CRATE_ID, source=str(demo_crate))
    finally:
        service.close()

    assert response.status == "error"
    assert "rustup toolchain install" in response.message
    assert not service.store.crate_path(CRATE_ID).exists()


async def test_failed_update_keeps_previous_docs(service, runner_factory, demo_crate):
    await service.cache_crate(CRATE_ID, source=str(demo_crate))
    docs_before = service.store.docs_path(CRATE_ID).read_bytes()

    service.generator.runner = runner_factory(rustdoc_failures=["error: permission denied"])
    response = await service.cache_crate(CRATE_ID, source=str(demo_crate), update=True)

    assert response.status == "error"
    assert service.store.docs_path(CRATE_ID).read_bytes() == docs_before


async def test_ensure_source_member(service, workspace):
    member_dir = await service.ensure_source(WS_ID, member="crates/beta", source=str(workspace))
    assert member_dir == service.store.source_path(WS_ID) / "crates/beta"

    with pytest.raises(NotFoundError):
        await service.ensure_source(WS_ID, member="crates/gamma", source=str(workspace))
    with pytest.raises(InvalidInputError):
        await service.ensure_source(WS_ID, member="../escape", source=str(workspace))


async def test_ensure_docs_removes_fresh_crate_on_failure(settings, runner_factory, demo_crate):
    runner = runner_factory(rustdoc_failures=["error: no library targets found in package `demo-crate`"])
    service = CrateDocsService(settings, runner=runner)
    try:
        with pytest.raises(GenerationError):
            await service.ensure_docs(CRATE_ID, source=str(demo_crate))
        assert not service.store.crate_path(CRATE_ID).exists()
    finally:
        service.close()


async def test_resolve_targets(service, workspace, demo_crate):
    await service.ensure_source(WS_ID, source=str(workspace))
    assert await service.resolve_targets(WS_ID, ["crates/alpha"]) == ["crates/alpha"]
    with pytest.raises(GenerationError) as exc_info:
        await service.resolve_targets(WS_ID)
    assert "crates/alpha, crates/beta" in exc_info.value.hint

    await service.ensure_source(CRATE_ID, source=str(demo_crate))
    assert await service.resolve_targets(CRATE_ID) == [None]


async def test_get_dependencies(service, demo_crate):
    await service.ensure_docs(CRATE_ID, source=str(demo_crate))
    records = await service.get_dependencies(CRATE_ID)
    assert [(r.name, r.resolved_version) for r in records] == [("serde", "1.0.210"), ("tempfile", None)]


async def test_list_cached_crates(service, demo_crate, workspace):
    await service.cache_crate(CRATE_ID, source=str(demo_crate))
    await service.cache_crate(WS_ID, source=str(workspace), members=["crates/alpha"])

    listing = service.list_cached_crates()

    assert listing.total_count == 2
    by_name = {c.name: c for c in listing.crates}
    assert by_name["demo-crate"].doc_generated
    assert by_name["demo-crate"].source == "local"
    assert by_name["ws"].members == ["crates/alpha"]
    assert listing.total_size_bytes == sum(c.size_bytes for c in listing.crates)
    assert listing.total_size_human.endswith("B")
    assert service.list_versions("demo-crate") == ["1.0.0"]


async def test_search_indexes_lazily(service, demo_crate):
    await service.ensure_docs(CRATE_ID, source=str(demo_crate))
    assert not service.search_index.is_crate_indexed("demo-crate", "1.0.0")

    results = await service.search(CRATE_ID, "hello")

    assert results[0].name == "hello"
    assert service.search_index.is_crate_indexed("demo-crate", "1.0.0")
    assert (await service.search(CRATE_ID, "helo", fuzzy=True))[0].name == "hello"
    assert [r.name for r in await service.search(CRATE_ID, "greeting", kind="struct")] == ["Greeter"]
    assert await service.suggest(CRATE_ID, "Greter") == ["Greeter"]


async def test_search_workspace_members(service, workspace):
    await service.cache_crate(WS_ID, source=str(workspace), members=["crates/alpha", "crates/beta"])

    all_hits = await service.search(WS_ID, "hello")
    assert {r.member for r in all_hits} == {"crates/alpha", "crates/beta"}

    beta_hits = await service.search(WS_ID, "hello", member="crates/beta")
    assert {r.member for r in beta_hits} == {"crates/beta"}


async def test_remove(service, demo_crate):
    await service.ensure_docs(CRATE_ID, source=str(demo_crate))
    await service.search(CRATE_ID, "hello")

    assert await service.remove(CRATE_ID)
    assert not service.store.is_cached(CRATE_ID)
    assert not service.search_index.is_crate_indexed("demo-crate", "1.0.0")
    assert not await service.remove(CRATE_ID)


async def test_task_listing_and_clear(service, demo_crate):
    task = service.start_caching_task(CRATE_ID, source=str(demo_crate))
    await service.tasks.wait(task.task_id)

    assert [t.task_id for t in service.list_tasks()] == [task.task_id]
    assert [t.task_id for t in service.clear_tasks()] == [task.task_id]
    assert service.list_tasks() == []


async def test_member_with_failed_metadata_is_regenerated(settings, runner_factory, workspace):
    runner = runner_factory(metadata_failures={"alpha"})
    service = CrateDocsService(settings, runner=runner)
    try:
        response = await service.cache_crate(
            WS_ID, source=str(workspace), members=["crates/alpha", "crates/beta"]
        )
        assert response.status == "members_partial"
        assert "crates/alpha" in response.errors
        assert not service.store.has_member_docs(WS_ID, "crates/alpha")

        runner.metadata_failures.clear()
        artifact = await service.ensure_docs(WS_ID, member="crates/alpha")
        assert artifact.items(kind="function")
        assert service.store.load_metadata(WS_ID, "crates/alpha").doc_generated
        assert [r.name for r in await service.get_dependencies(WS_ID, "crates/alpha")] == ["serde", "tempfile"]
    finally:
        service.close()


async def test_directory_walks_run_in_worker_threads(service, demo_crate, monkeypatch):
    on_loop_thread = []
    real_size = storage.calculate_dir_size

    def recording_size(path):
        on_loop_thread.append(threading.current_thread() is threading.main_thread())
        return real_size(path)

    monkeypatch.setattr(storage, "calculate_dir_size", recording_size)
    await service.ensure_docs(CRATE_ID, source=str(demo_crate))

    assert len(on_loop_thread) == 2
    assert not any(on_loop_thread)


async def test_item_queries(service, demo_crate):
    await service.cache_crate(CRATE_ID, source=str(demo_crate))

    hits = await service.search_items(CRATE_ID, "hel")
    assert [i.name for i in hits] == ["hello"]
    assert await service.get_item_docs(CRATE_ID, hits[0].id) == "Says hello to the caller."

    details = await service.get_item_details(CRATE_ID, hits[0].id)
    assert details.signature == "fn hello()"

    source = await service.get_item_source(CRATE_ID, hits[0].id, context_lines=0)
    assert source.code.startswith("pub fn hello()")

    with pytest.raises(NotFoundError):
        await service.get_item_source(CRATE_ID, "2")
