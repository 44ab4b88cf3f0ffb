import argparse
import asyncio
import os
import sys
from pathlib import Path

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from rag_index_server.config import settings
from rag_index_server.embeddings.embedder import Embedder
from rag_index_server.rag.engine import RagEngine
from rag_index_server.rag.indexer import DocumentIndexer, IndexDocument
from rag_index_server.rag.models import NamespaceConfig


def parse_args():
    parser = argparse.ArgumentParser(description="Index a directory of text files into a namespace.")
    parser.add_argument("directory", type=Path)
    parser.add_argument("--namespace", required=True)
    parser.add_argument("--model-id", default=settings.embedding_model)
    parser.add_argument("--dimension", type=int, default=1536)
    parser.add_argument("--pattern", default="*.txt", help="Glob for files to index (recursive)")
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Fill a fresh pending version and swap it in when done",
    )
    return parser.parse_args()


async def main():
    args = parse_args()

    if settings.storage_backend == "memory":
        print("Warning: STORAGE_BACKEND=memory, the index is discarded when this script exits.")
    else:
        from rag_index_server.db import init_models
        await init_models()

    print("Initializing engine...")
    engine = RagEngine()
    indexer = DocumentIndexer(engine, Embedder())
    config = NamespaceConfig(
        namespace=args.namespace,
        model_id=args.model_id,
        dimension=args.dimension,
    )

    if args.rebuild:
        target = await engine.namespaces.start_rebuild(config)
    else:
        target = await engine.namespaces.get_or_create(config)
    print(f"Target namespace: {target.namespace_id} ({target.status.value})")

    # 1. Collect documents
    documents = []
    for path in sorted(args.directory.rglob(args.pattern)):
        if not path.is_file():
            continue
        text = path.read_text(encoding="utf-8", errors="replace")
        if not text.strip():
            continue
        documents.append(
            IndexDocument(
                key=str(path.relative_to(args.directory)),
                title=path.stem,
                text=text,
            )
        )

    if not documents:
        print("No documents to index.")
        return
    print(f"Found {len(documents)} documents. Indexing (this may take time)...")

    # 2. Index, skipping unchanged files
    summary = await indexer.index_many(config, documents, namespace_id=target.namespace_id)
    print(f"Indexed {summary.indexed}, skipped {summary.skipped}, failed {summary.failed}.")
    for key, error in summary.errors.items():
        print(f"  {key}: {error}")

    # 3. Make the namespace searchable
    result = await engine.namespaces.promote_to_ready(target.namespace_id)
    if result.replaced_version is not None:
        print(f"Replaced namespace version {result.replaced_version.version}.")
    print("Done! Namespace is ready.")


if __name__ == "__main__":
    asyncio.run(main())
