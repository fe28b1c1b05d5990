import importlib.util
from pathlib import Path

import pytest

from knowledge_index.embeddings.models import SourceType
from knowledge_index.knowledge.nodes import NodeService

from conftest import FakeEmbedder, make_record

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "rebuild_index.py"


@pytest.fixture(scope="module")
def rebuild_script():
    spec = importlib.util.spec_from_file_location("rebuild_index", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def embedder():
    return FakeEmbedder(vectors={"First node.": [1.0, 0.0, 0.0], "Second node.": [0.0, 1.0, 0.0]})


async def seed(blob_store, index, embedder):
    nodes = NodeService(blob_store, index, embedder)
    first = await nodes.create_node(content="First node.")
    second = await nodes.create_node(content="Second node.")
    await index.upsert(
        make_record("chunk", [0.0, 0.0, 1.0], source_type=SourceType.DOCUMENT_CHUNK, source_id="d#0")
    )
    await blob_store.save_json("knowledge_nodes/2025-01-01-node-broken-00000000.json", {"id": ""})
    return first, second


@pytest.mark.asyncio
async def test_rebuild_reembeds_nodes_and_keeps_other_records(
    rebuild_script, blob_store, index, embedder
):
    first, second = await seed(blob_store, index, embedder)
    before = {r.source_id: r.id for r in await index.load()}
    embedder.calls.clear()

    counts = await rebuild_script.rebuild(blob_store, embedder)

    assert counts == {"nodes": 2, "kept_other": 1, "skipped": 1}
    assert len(embedder.calls) == 1
    assert sorted(embedder.calls[0]) == ["First node.", "Second node."]

    rebuilt = rebuild_script.VectorIndexCache(rebuild_script.VectorRecordStore(blob_store))
    records = {r.source_id: r for r in await rebuilt.load()}
    assert set(records) == {first.node.id, second.node.id, "d#0"}
    assert records[first.node.id].id == before[first.node.id]
    assert records[first.node.id].meta.source_ref == first.filename
    assert records[second.node.id].vector == [0.0, 1.0, 0.0]


@pytest.mark.asyncio
async def test_rebuild_nodes_only_drops_other_records(rebuild_script, blob_store, index, embedder):
    await seed(blob_store, index, embedder)

    counts = await rebuild_script.rebuild(blob_store, embedder, nodes_only=True)

    assert counts["kept_other"] == 0
    rebuilt = rebuild_script.VectorIndexCache(rebuild_script.VectorRecordStore(blob_store))
    assert {r.source_type for r in await rebuilt.load()} == {SourceType.KNOWLEDGE_NODE}


@pytest.mark.asyncio
async def test_rebuild_with_no_nodes_writes_empty_node_set(rebuild_script, blob_store):
    counts = await rebuild_script.rebuild(blob_store, FakeEmbedder())

    assert counts == {"nodes": 0, "kept_other": 0, "skipped": 0}
