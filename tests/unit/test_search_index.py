"""
Unit tests for crate_docs/index/search_index.py
"""
import pytest

from crate_docs.config.settings import SearchCfg
from crate_docs.docgen import DocArtifact, ItemInfo
from crate_docs.errors import InvalidInputError
from crate_docs.index import SearchIndex


def _item(item_id, name, kind, docs="", module="tokio"):
    return ItemInfo(id=item_id, name=name, kind=kind, path=[module, name], docs=docs)


ITEMS = [
    _item("1", "spawn", "function", "Spawns a new asynchronous task, returning a JoinHandle."),
    _item("2", "spawn_blocking", "function", "Runs the provided closure on a thread where blocking is acceptable."),
    _item("3", "JoinHandle", "struct", "An owned permission to join on a task (await its termination)."),
    _item("4", "Runtime", "struct", "The Tokio runtime."),
    _item("5", "block_on", "function", "Runs a future to completion on the runtime."),
]


@pytest.fixture
def index(tmp_path):
    with SearchIndex(tmp_path / "search_index") as idx:
        idx.add_crate_items("tokio", "1.38.0", ITEMS)
        yield idx


def test_is_crate_indexed_by_version(index):
    assert index.is_crate_indexed("tokio", "1.38.0")
    assert not index.is_crate_indexed("tokio", "1.0.0")
    assert not index.is_crate_indexed("serde", "1.38.0")


def test_search_ranks_name_matches_first(index):
    results = index.search("spawn", "tokio")
    assert results[0].name == "spawn"
    assert {r.name for r in results} >= {"spawn", "spawn_blocking"}
    assert results[0].crate == "tokio"
    assert results[0].version == "1.38.0"
    assert results[0].path == "tokio::spawn"


def test_search_kind_filter(index):
    results = index.search("task", "tokio", kind="struct")
    assert [r.name for r in results] == ["JoinHandle"]


def test_search_boolean_operators(index):
    names = {r.name for r in index.search("spawn -blocking", "tokio")}
    assert names == {"spawn"}

    names = {r.name for r in index.search("+runtime +completion", "tokio")}
    assert names == {"block_on"}

    assert index.search('"thread where blocking"', "tokio")[0].name == "spawn_blocking"
    assert [r.name for r in index.search("name:runtime", "tokio")] == ["Runtime"]


def test_search_limit_and_version_filter(index):
    assert len(index.search("runtime OR task OR spawn", "tokio", limit=2)) == 2
    assert index.search("spawn", "tokio", version="0.1.0") == []
    assert index.search("spawn", "unknown-crate") == []


def test_search_validation(index):
    with pytest.raises(InvalidInputError):
        index.search("", "tokio")
    with pytest.raises(InvalidInputError):
        index.search("x" * 1001, "tokio")
    with pytest.raises(InvalidInputError):
        index.search("spawn", "../etc")
    assert index.search("AND", "tokio") == []


def test_fuzzy_search(index):
    results = index.fuzzy_search("spwan", "tokio")
    assert results[0].name == "spawn"

    assert index.fuzzy_search("runtmie", "tokio", distance=0) == []
    with pytest.raises(InvalidInputError):
        index.fuzzy_search("spawn", "tokio", distance=3)


def test_suggest(index):
    assert index.suggest("spwan", "tokio")[0] == "spawn"
    assert index.suggest("zzzzzz", "tokio") == []
    assert len(index.suggest("spawn", "tokio", limit=1)) == 1


def test_remove_only_targets_version(index):
    index.add_crate_items("tokio", "1.0.0", ITEMS[:2])

    assert index.remove_crate("tokio", "1.38.0") == len(ITEMS)
    assert not index.is_crate_indexed("tokio", "1.38.0")
    assert index.is_crate_indexed("tokio", "1.0.0")
    assert index.search("runtime", "tokio", version="1.38.0") == []


def test_reindex_replaces_documents(index):
    assert index.search("runtime", "tokio")
    index.add_crate_items("tokio", "1.38.0", ITEMS[:1])
    assert index.stats()["count"] == 1
    assert index.search("runtime", "tokio", version="1.38.0") == []


def test_member_documents(tmp_path):
    with SearchIndex(tmp_path / "idx") as idx:
        idx.add_crate_items("ws", "main", ITEMS[:1], member="crates/a")
        idx.add_crate_items("ws", "main", ITEMS[3:4], member="crates/b")

        assert idx.is_crate_indexed("ws", "main", member="crates/a")
        assert not idx.is_crate_indexed("ws", "main")
        assert [r.name for r in idx.search("spawn OR runtime", "ws", member="crates/a")] == ["spawn"]
        assert len(idx.search("spawn OR runtime", "ws")) == 2
        assert idx.search("spawn", "ws")[0].member == "crates/a"


def test_item_ceiling(tmp_path):
    with SearchIndex(tmp_path / "idx", SearchCfg(max_items_per_crate=2)) as idx:
        with pytest.raises(InvalidInputError):
            idx.add_crate_items("tokio", "1.38.0", ITEMS)
        assert not idx.is_crate_indexed("tokio", "1.38.0")


def test_index_from_artifact(tmp_path, sample_docs):
    items = DocArtifact(sample_docs).items()
    with SearchIndex(tmp_path / "idx") as idx:
        assert idx.add_crate_items("demo-crate", "1.0.0", items) == 3
        hit = idx.search("hello", "demo-crate")[0]
        assert hit.kind == "function"
        assert hit.docs == "Says hello to the caller."


def test_index_persists(tmp_path):
    with SearchIndex(tmp_path / "idx") as idx:
        idx.add_crate_items("tokio", "1.38.0", ITEMS)
    with SearchIndex(tmp_path / "idx") as idx:
        assert idx.is_crate_indexed("tokio", "1.38.0")
        assert idx.search("spawn", "tokio")[0].name == "spawn"


def test_corpus_loaded_during_removal_is_not_reused(index, monkeypatch):
    real_fetch = index.store.fetch

    def fetch_then_remove(*args, **kwargs):
        documents = real_fetch(*args, **kwargs)
        index.remove_crate("tokio", "1.38.0")
        return documents

    monkeypatch.setattr(index.store, "fetch", fetch_then_remove)
    assert index.search("spawn", "tokio", "1.38.0")

    monkeypatch.setattr(index.store, "fetch", real_fetch)
    assert index.search("spawn", "tokio", "1.38.0") == []
