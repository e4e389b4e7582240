#!/usr/bin/env python
"""Upload and ingest local files into the knowledge base.

Usage:
    python scripts/ingest.py report.pdf schemes.json     # Ingest files
    python scripts/ingest.py docs/ --verbose             # Ingest a directory
    python scripts/ingest.py docs/ --keyword-limit 0     # Skip keyword synthesis
"""
import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fundingiq import config, db
from fundingiq.rag.ingest import IngestPipeline
import structlog

logger = structlog.get_logger()

SUPPORTED_SUFFIXES = {".txt", ".md", ".markdown", ".csv", ".json", ".pdf"}


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None
        self.names = {}

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, document_id: str):
        """Update progress."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        file_name = self.names.get(document_id, document_id)
        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print(f"  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Documents processed: {stats['documents_processed']}")
        print(f"  ❌ Documents failed:    {stats['documents_failed']}")
        print(f"  📝 Chunks created:      {stats['chunks_created']}")
        print(f"  🔑 Chunks with keywords: {stats['keywords_generated']}")
        print(f"  ⏱️  Time elapsed:        {elapsed_seconds:.1f}s")
        print(f"\n{'=' * 60}\n")

        if stats["documents_failed"] > 0:
            print(f"⚠️  Warning: {stats['documents_failed']} document(s) failed to ingest.")
            print(f"   Check logs or `GET /api/documents` for the recorded reason.\n")


def collect_files(paths) -> list:
    """Expand directories into the supported files they contain."""
    files = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(p for p in path.rglob("*") if p.suffix.lower() in SUPPORTED_SUFFIXES)
            )
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return files


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Upload and ingest files into the FundingIQ knowledge base",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py report.pdf            # Single file
  python scripts/ingest.py docs/ --verbose       # Whole directory
        """,
    )

    parser.add_argument("paths", nargs="+", type=Path, help="Files or directories to ingest")

    parser.add_argument(
        "--keyword-limit",
        type=int,
        default=None,
        help=f"Chunks per document that get keywords (default: {config.KEYWORD_CHUNK_LIMIT})",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()
    progress = ProgressReporter(verbose=args.verbose)

    try:
        files = collect_files(args.paths)
        if not files:
            print("\nNo supported files found.\n")
            sys.exit(1)

        print("\n📋 Configuration:")
        print(f"   Storage directory: {config.STORAGE_DIR}")
        print(f"   Keyword model:     {config.KEYWORD_MODEL}")
        print(f"   Chunk size:        {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:     {config.CHUNK_OVERLAP} chars")
        print(f"   Keyword limit:     {args.keyword_limit if args.keyword_limit is not None else config.KEYWORD_CHUNK_LIMIT} chunks/document")

        if not config.GATEWAY_API_KEY:
            print("\n⚠️  GATEWAY_API_KEY is not set: chunks will be stored without keywords.")

        db.init_database()
        pipeline = IngestPipeline(keyword_chunk_limit=args.keyword_limit)

        progress.start(f"Ingesting {len(files)} file(s)")

        items = []
        for path in files:
            file_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            document = await pipeline.upload_document(path.name, file_type, path.read_bytes())
            progress.names[document.id] = path.name
            items.append((document.id, document.file_path))

        stats = await pipeline.ingest_many(
            items,
            progress_callback=progress.update,
        )

        progress.finish(stats)

        if stats["documents_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
