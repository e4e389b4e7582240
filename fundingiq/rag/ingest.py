"""Ingest pipeline for uploaded documents.

Orchestrates:
- Object download
- Text extraction
- Text chunking
- Keyword synthesis (first N chunks only)
- Data-source and chunk storage
- Document status transitions (pending -> processing -> ready | error)

Only `pending` documents can be processed. `ready` and `error` are final:
to re-ingest or retry, upload the file again as a new document.
"""
import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import structlog

from fundingiq import config, db
from fundingiq.errors import DocumentNotFoundError, DocumentStateError, FundingIQError
from fundingiq.models import Document, DocumentStatus
from fundingiq.rag.chunker import TextChunker
from fundingiq.rag.extractor import TextExtractor
from fundingiq.rag.keywords import KeywordSynthesizer
from fundingiq.storage import ObjectStorage, get_storage

logger = structlog.get_logger()

# Characters of extracted text kept on the data-source record
SOURCE_EXCERPT_CHARS = 5000


@dataclass
class IngestResult:
    """Outcome of one successful ingestion run."""

    document_id: str
    run_id: str
    chunks_created: int
    keywords_generated: int


class IngestPipeline:
    """Pipeline for ingesting uploaded documents into the chunk store."""

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        extractor: Optional[TextExtractor] = None,
        chunker: Optional[TextChunker] = None,
        synthesizer: Optional[KeywordSynthesizer] = None,
        keyword_chunk_limit: Optional[int] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            storage: Object storage holding uploaded bytes
            extractor: Text extractor
            chunker: Text chunker (default config sizes)
            synthesizer: Keyword synthesizer
            keyword_chunk_limit: Only this many leading chunks per document
                get keywords (default from config)
        """
        self.storage = storage or get_storage()
        self.extractor = extractor or TextExtractor()
        self.chunker = chunker or TextChunker()
        self.synthesizer = synthesizer or KeywordSynthesizer()
        self.keyword_chunk_limit = (
            config.KEYWORD_CHUNK_LIMIT if keyword_chunk_limit is None else keyword_chunk_limit
        )

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            keyword_chunk_limit=self.keyword_chunk_limit,
        )

    async def upload_document(self, file_name: str, file_type: str, data: bytes) -> Document:
        """Store uploaded bytes and create a `pending` document.

        Args:
            file_name: Original file name
            file_type: Declared MIME type
            data: File contents

        Returns:
            The created Document
        """
        document_id = str(uuid.uuid4())
        safe_name = Path(file_name).name or "upload"
        file_path = f"{document_id}/{safe_name}"

        await self.storage.upload(file_path, data)
        return db.create_document(
            document_id=document_id,
            file_name=safe_name,
            file_type=file_type or "application/octet-stream",
            file_size=len(data),
            file_path=file_path,
        )

    def _mark_failed(self, document_id: str, reason: str) -> None:
        db.update_document_status(document_id, DocumentStatus.ERROR, error_message=reason)

    async def process_document(self, document_id: str, file_path: Optional[str] = None) -> IngestResult:
        """Run the full ingestion for one document.

        Args:
            document_id: Document to process
            file_path: Storage path of the bytes (defaults to the document's own)

        Returns:
            IngestResult with the number of chunks created

        Raises:
            DocumentNotFoundError: If the document doesn't exist
            DocumentStateError: If the document is not pending
            FetchError: If the stored bytes are missing
            ExtractionError: If too little text could be extracted
        """
        document = db.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError()

        if not db.claim_document(document_id):
            logger.warning(
                "document_not_pending",
                document_id=document_id,
                status=document.status.value,
            )
            raise DocumentStateError(f"Document is {document.status.value}; upload it again to re-process")

        file_path = file_path or document.file_path
        run_id = str(uuid.uuid4())

        logger.info(
            "document_processing_started",
            document_id=document_id,
            file_path=file_path,
            run_id=run_id,
        )

        try:
            result = await self._run(document, file_path, run_id)

        except FundingIQError as e:
            logger.error(
                "document_processing_failed",
                document_id=document_id,
                error=e.message,
                error_type=type(e).__name__,
            )
            self._mark_failed(document_id, e.message)
            raise

        except asyncio.CancelledError:
            logger.warning("document_processing_cancelled", document_id=document_id)
            self._mark_failed(document_id, "Processing cancelled")
            raise

        except Exception as e:
            logger.error(
                "document_processing_failed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._mark_failed(document_id, "Processing failed")
            raise

        db.update_document_status(document_id, DocumentStatus.READY, chunks_count=result.chunks_created)

        logger.info(
            "document_processing_completed",
            document_id=document_id,
            chunks_created=result.chunks_created,
            keywords_generated=result.keywords_generated,
        )
        return result

    async def _run(self, document: Document, file_path: str, run_id: str) -> IngestResult:
        data = await self.storage.download(file_path)
        text = self.extractor.extract(data, document.file_type, document.file_name)
        chunks = self.chunker.chunk_text(text)

        if not chunks:
            logger.warning("no_chunks_created", document_id=document.id, text_length=len(text))

        db.insert_data_source(
            document_id=document.id,
            run_id=run_id,
            title=Path(file_path).name,
            url=file_path,
            content=text[:SOURCE_EXCERPT_CHARS],
            metadata={
                "documentId": document.id,
                "chunksCount": len(chunks),
                "chunkStats": self.chunker.get_chunk_stats(chunks),
            },
        )

        keyword_sets = await self.synthesizer.synthesize_many(
            [chunk.content for chunk in chunks[: self.keyword_chunk_limit]]
        )

        keywords_generated = 0
        for chunk in chunks:
            keywords = None
            if chunk.chunk_index < len(keyword_sets) and keyword_sets[chunk.chunk_index]:
                keywords = keyword_sets[chunk.chunk_index]
                keywords_generated += 1

            db.insert_chunk(
                document_id=document.id,
                run_id=run_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                keywords=keywords,
            )

        return IngestResult(
            document_id=document.id,
            run_id=run_id,
            chunks_created=len(chunks),
            keywords_generated=keywords_generated,
        )

    async def ingest_many(
        self,
        items: Sequence[Tuple[str, Optional[str]]],
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> Dict[str, Any]:
        """Process several documents, isolating failures.

        Args:
            items: (document_id, file_path) pairs; file_path may be None
            progress_callback: Optional callback function(current, total, document_id)

        Returns:
            Dictionary with ingestion statistics
        """
        stats = {
            "documents_processed": 0,
            "documents_failed": 0,
            "chunks_created": 0,
            "keywords_generated": 0,
        }

        for idx, (document_id, file_path) in enumerate(items, 1):
            if progress_callback:
                progress_callback(idx, len(items), document_id)

            try:
                result = await self.process_document(document_id, file_path)
            except Exception as e:
                logger.error("batch_document_failed", document_id=document_id, error=str(e))
                stats["documents_failed"] += 1
                # Continue with next document instead of failing entirely
                continue

            stats["documents_processed"] += 1
            stats["chunks_created"] += result.chunks_created
            stats["keywords_generated"] += result.keywords_generated

        logger.info("batch_ingest_completed", stats=stats)
        return stats

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document, its chunks and its stored bytes.

        Returns:
            True if deleted, False if not found
        """
        document = db.delete_document(document_id)
        if document is None:
            return False

        try:
            await self.storage.remove(document.file_path)
        except Exception as e:
            logger.error("document_object_remove_failed", document_id=document_id, error=str(e))
            raise

        return True
