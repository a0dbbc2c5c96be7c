"""Rebuild or extend the vector store from the documents directory.

Usage:
    docrag-reindex                       # Add documents to the existing store
    docrag-reindex --rebuild             # Clear the store and index from scratch
    docrag-reindex --documents-dir DIR   # Index a different directory
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog

from docrag import config
from docrag.errors import DocRagError
from docrag.llm_client import OllamaClient
from docrag.rag.gateways import EmbeddingGateway
from docrag.rag.ingest import IngestPipeline
from docrag.rag.store import VectorStore

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "#" * filled + "-" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict, index_dir: Path):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Files processed:      {stats['files_processed']}")
        print(f"  ❌ Files failed:         {stats['files_failed']}")
        print(f"  📝 Chunks created:       {stats['chunks_created']}")
        print(f"  🧮 Embeddings generated: {stats['embeddings_generated']}")
        print(f"  ⏱️  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  ⚡ Indexing rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"⚠️  Warning: {stats['files_failed']} file(s) failed to index.")
            print("   Check logs for details.\n")

        if stats["files_processed"] > 0:
            print(f"✅ Store saved to: {index_dir}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docrag-reindex",
        description="Index documents into the docrag vector store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docrag-reindex              # Add documents to the existing store
  docrag-reindex --rebuild    # Full rebuild from scratch
  docrag-reindex --verbose    # Show detailed progress
        """,
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the existing store before indexing",
    )
    parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Don't pause before a rebuild",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )
    parser.add_argument(
        "--documents-dir",
        type=Path,
        default=None,
        help=f"Documents directory (default: {config.DOCUMENTS_DIR})",
    )
    parser.add_argument(
        "--store-dir",
        type=Path,
        default=None,
        help=f"Vector store directory (default: {config.STORE_DIR})",
    )
    return parser


async def run(args: argparse.Namespace, embedder: Optional[EmbeddingGateway] = None) -> int:
    """Run ingestion for parsed CLI arguments.

    Returns:
        Process exit code (1 if any file failed)
    """
    documents_dir = args.documents_dir or config.DOCUMENTS_DIR
    store_dir = args.store_dir or config.STORE_DIR

    print("\n📋 Configuration:")
    print(f"   Documents directory: {documents_dir}")
    print(f"   Store directory:     {store_dir}")
    print(f"   Embedding model:     {config.EMBEDDING_MODEL}")
    print(f"   Chunk size:          {config.CHUNK_TARGET_SIZE} tokens")
    print(f"   Chunk overlap:       {config.CHUNK_OVERLAP} tokens")

    if args.rebuild and not args.yes:
        print("\n⚠️  Rebuild mode: Will clear the existing store!")
        print("   Press Ctrl+C within 3 seconds to cancel...")
        await asyncio.sleep(3)

    store = VectorStore(store_dir)
    if not args.rebuild:
        await asyncio.to_thread(store.init_or_load)

    progress = ProgressReporter(verbose=args.verbose)
    progress.start(f"{'Rebuilding' if args.rebuild else 'Indexing'} Documents")

    pipeline = IngestPipeline(store, embedder or OllamaClient())
    await pipeline.ingest(documents_dir, rebuild=args.rebuild, progress_callback=progress.update)

    progress.finish(pipeline.stats, store_dir)

    return 1 if pipeline.stats["files_failed"] > 0 else 0


def main(argv: Optional[List[str]] = None, embedder: Optional[EmbeddingGateway] = None) -> int:
    """Entry point for the ``docrag-reindex`` command."""
    args = build_parser().parse_args(argv)

    try:
        return asyncio.run(run(args, embedder=embedder))

    except KeyboardInterrupt:
        print("\n\n⚠️  Indexing cancelled by user.\n")
        return 1

    except DocRagError as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("reindex_failed", error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
