"""
Rebuild the vector index from the stored knowledge nodes.

Source of truth: knowledge_nodes/*.json in the blob store.
Target:          index/embeddings-metadata.json (whole-document overwrite)

Usage:
    python scripts/rebuild_index.py [--nodes-only] [--data-root PATH]
"""

import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from pydantic import ValidationError as PydanticValidationError

from knowledge_index.core.utils import generate_id, now_iso
from knowledge_index.embeddings.embedder import RetryingBatchEmbedder
from knowledge_index.embeddings.index import VectorIndexCache
from knowledge_index.embeddings.models import EmbeddingMeta, EmbeddingRecord, SourceType
from knowledge_index.embeddings.store import VectorRecordStore
from knowledge_index.knowledge.models import KNOWLEDGE_NODES_PREFIX, KnowledgeNode
from knowledge_index.storage.blob_store import FileBlobStore


async def rebuild(blob_store, embedder, nodes_only: bool = False) -> dict:
    """
    Re-embed every stored knowledge node and replace the index in one write.

    Returns counters for the run.
    """
    index = VectorIndexCache(VectorRecordStore(blob_store))

    # 1. Discover nodes (deterministic order)
    keys = await blob_store.list_keys(KNOWLEDGE_NODES_PREFIX)
    if not keys:
        print("[WARN] No knowledge nodes found. Node records will be empty.")

    nodes = []
    filenames = []
    skipped = 0
    for key in keys:
        raw = await blob_store.read_json(key)
        if raw is None:
            print(f"[SKIP] File disappeared during read: {key}")
            skipped += 1
            continue
        try:
            nodes.append(KnowledgeNode.model_validate(raw))
        except PydanticValidationError:
            print(f"[SKIP] Invalid KnowledgeNode structure: {key}")
            skipped += 1
            continue
        filenames.append(key[len(KNOWLEDGE_NODES_PREFIX):])

    # 2. Embed all contents (batched by the embedder)
    vectors = []
    if nodes:
        print(f"Embedding {len(nodes)} nodes (this may take time)...")
        vectors = await embedder.embed_many([n.content for n in nodes])

    # 3. Build records, reusing ids of existing node records
    existing = await index.load()
    existing_ids = {
        r.source_id: r.id for r in existing if r.source_type == SourceType.KNOWLEDGE_NODE
    }
    created_at = now_iso()
    node_records = [
        EmbeddingRecord(
            id=existing_ids.get(node.id) or generate_id(),
            source_type=SourceType.KNOWLEDGE_NODE,
            source_id=node.id,
            vector=vector,
            created_at=created_at,
            meta=EmbeddingMeta(model=embedder.model, node_type=node.type, source_ref=filename),
        )
        for node, vector, filename in zip(nodes, vectors, filenames)
    ]

    kept = [] if nodes_only else [
        r for r in existing if r.source_type != SourceType.KNOWLEDGE_NODE
    ]

    # 4. Atomic whole-index replace
    print("Saving index...")
    await index.replace_all(kept + node_records)

    return {"nodes": len(node_records), "kept_other": len(kept), "skipped": skipped}


async def main(nodes_only: bool, data_root: str | None) -> None:
    blob_store = FileBlobStore(data_root)

    print("Rebuild Index")
    print(f"Source: {blob_store.root / KNOWLEDGE_NODES_PREFIX}")
    print("Started:", now_iso())

    counts = await rebuild(blob_store, RetryingBatchEmbedder(), nodes_only)

    print(
        f"Done! nodes={counts['nodes']} keptOther={counts['kept_other']} "
        f"skipped={counts['skipped']}"
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--nodes-only",
        action="store_true",
        help="Drop conversation and document records instead of keeping them.",
    )
    parser.add_argument("--data-root", default=None, help="Blob store root directory.")
    args = parser.parse_args()
    asyncio.run(main(args.nodes_only, args.data_root))
