"""Database initialization and helpers for the FundingIQ knowledge service.

SQLite database for storing:
- Uploaded documents and their ingestion status
- Data-source (provenance) records, one per ingestion run
- Text chunks with their synthesized keywords
"""
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from fundingiq import config
from fundingiq.models import ChunkRecord, Document, DocumentStatus, category_for

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - documents: uploaded files and their lifecycle status
    - data_sources: provenance summary written by each ingestion run
    - chunks: chunk text, position and keywords, keyed by ingestion run
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                file_name TEXT NOT NULL,
                file_type TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                file_path TEXT NOT NULL,
                status TEXT NOT NULL,
                category TEXT NOT NULL,
                chunks_count INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS data_sources (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                run_id TEXT NOT NULL UNIQUE,
                source_type TEXT NOT NULL,
                title TEXT NOT NULL,
                url TEXT NOT NULL,
                content TEXT NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        # A rerun of the same ingestion run ignores chunks it already wrote
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                run_id TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                keywords_json TEXT,
                created_at TEXT NOT NULL,
                UNIQUE(run_id, chunk_index)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document_id
            ON chunks(document_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        file_name=row["file_name"],
        file_type=row["file_type"],
        file_size=row["file_size"],
        file_path=row["file_path"],
        status=DocumentStatus(row["status"]),
        category=row["category"],
        chunks_count=row["chunks_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        error_message=row["error_message"],
    )


def _row_to_chunk(row: sqlite3.Row) -> ChunkRecord:
    keywords = json.loads(row["keywords_json"]) if row["keywords_json"] else None
    return ChunkRecord(
        id=row["id"],
        document_id=row["document_id"],
        run_id=row["run_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        keywords=keywords,
        created_at=row["created_at"],
    )


def create_document(
    document_id: str,
    file_name: str,
    file_type: str,
    file_size: int,
    file_path: str,
) -> Document:
    """Insert a new document in `pending` status.

    Args:
        document_id: Generated document identifier
        file_name: Original file name
        file_type: Declared MIME type (or extension)
        file_size: Size of the stored bytes
        file_path: Object storage path of the bytes

    Returns:
        The created Document
    """
    conn = get_connection()
    cursor = conn.cursor()
    now = _now()

    try:
        cursor.execute("""
            INSERT INTO documents (
                id, file_name, file_type, file_size, file_path,
                status, category, chunks_count, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """, (
            document_id,
            file_name,
            file_type,
            file_size,
            file_path,
            DocumentStatus.PENDING.value,
            category_for(file_type, file_name),
            now,
            now,
        ))
        conn.commit()

        cursor.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
        document = _row_to_document(cursor.fetchone())
        logger.info("document_created", document_id=document_id, file_name=file_name)
        return document

    except Exception as e:
        conn.rollback()
        logger.error("document_create_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_document(document_id: str) -> Optional[Document]:
    """Get a document by ID, or None if it doesn't exist."""
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        return _row_to_document(row) if row else None
    finally:
        conn.close()


def list_documents(limit: int = 100) -> List[Document]:
    """List documents, most recent first."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM documents ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_document(row) for row in rows]
    finally:
        conn.close()


def get_documents_by_ids(document_ids: List[str]) -> List[Document]:
    """Retrieve documents by ID, in the order the IDs were given.

    Unknown IDs are skipped.
    """
    if not document_ids:
        return []

    conn = get_connection()
    try:
        placeholders = ",".join("?" * len(document_ids))
        rows = conn.execute(
            f"SELECT * FROM documents WHERE id IN ({placeholders})",
            document_ids,
        ).fetchall()
    finally:
        conn.close()

    by_id = {row["id"]: _row_to_document(row) for row in rows}
    return [by_id[doc_id] for doc_id in document_ids if doc_id in by_id]


def update_document_status(
    document_id: str,
    status: DocumentStatus,
    chunks_count: Optional[int] = None,
    error_message: Optional[str] = None,
) -> bool:
    """Move a document to a new lifecycle status.

    Args:
        document_id: Document to update
        status: New status
        chunks_count: Final chunk count (set when the document becomes ready)
        error_message: Failure cause (set when the document becomes error)

    Returns:
        True if the document exists, False otherwise
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        if chunks_count is None:
            cursor.execute(
                "UPDATE documents SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (status.value, error_message, _now(), document_id),
            )
        else:
            cursor.execute(
                "UPDATE documents SET status = ?, chunks_count = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (status.value, chunks_count, error_message, _now(), document_id),
            )
        conn.commit()
        updated = cursor.rowcount > 0
        logger.info("document_status_updated", document_id=document_id, status=status.value, found=updated)
        return updated

    except Exception as e:
        conn.rollback()
        logger.error("document_status_update_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def claim_document(document_id: str) -> bool:
    """Move a `pending` document to `processing`.

    The check and the update are one statement, so only one caller can
    claim a given upload.

    Returns:
        True if the document was pending and is now processing
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute(
            "UPDATE documents SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (DocumentStatus.PROCESSING.value, _now(), document_id, DocumentStatus.PENDING.value),
        )
        conn.commit()
        claimed = cursor.rowcount > 0
        logger.info("document_claim", document_id=document_id, claimed=claimed)
        return claimed

    except Exception as e:
        conn.rollback()
        logger.error("document_claim_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def insert_data_source(
    document_id: str,
    run_id: str,
    title: str,
    url: str,
    content: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Record the provenance summary of one ingestion run.

    Rerunning with the same run_id keeps the first record.

    Returns:
        ID of the data source row
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT OR IGNORE INTO data_sources (
                document_id, run_id, source_type, title, url,
                content, metadata_json, created_at
            ) VALUES (?, ?, 'document', ?, ?, ?, ?, ?)
        """, (
            document_id,
            run_id,
            title,
            url,
            content,
            json.dumps(metadata) if metadata else None,
            _now(),
        ))
        conn.commit()

        cursor.execute("SELECT id FROM data_sources WHERE run_id = ?", (run_id,))
        return cursor.fetchone()["id"]

    except Exception as e:
        conn.rollback()
        logger.error("data_source_insert_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def insert_chunk(
    document_id: str,
    run_id: str,
    chunk_index: int,
    content: str,
    keywords: Optional[List[str]] = None,
) -> Optional[int]:
    """Insert a chunk. Chunks are never updated in place.

    Args:
        document_id: Owning document
        run_id: Ingestion run that produced the chunk
        chunk_index: Zero-based position within the run
        content: Chunk text
        keywords: Synthesized keywords, or None when not synthesized

    Returns:
        ID of the inserted row, or None if (run_id, chunk_index) already existed
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT OR IGNORE INTO chunks (
                document_id, run_id, chunk_index, content,
                keywords_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            document_id,
            run_id,
            chunk_index,
            content,
            json.dumps(keywords) if keywords else None,
            _now(),
        ))
        conn.commit()
        return cursor.lastrowid if cursor.rowcount else None

    except Exception as e:
        conn.rollback()
        logger.error("chunk_insert_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_candidate_chunks(limit: int) -> List[ChunkRecord]:
    """Fetch up to `limit` of the most recent chunks, oldest first.

    Only chunks whose document still exists and has not failed are returned,
    so a chunk left behind by an interrupted delete is never served.
    """
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT * FROM (
                SELECT c.* FROM chunks c
                JOIN documents d ON d.id = c.document_id
                WHERE d.status != ?
                ORDER BY c.id DESC
                LIMIT ?
            ) ORDER BY id ASC
        """, (DocumentStatus.ERROR.value, limit)).fetchall()
        return [_row_to_chunk(row) for row in rows]

    except Exception as e:
        logger.error("candidate_chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_chunks_for_document(document_id: str) -> List[ChunkRecord]:
    """Get all chunks of a document in creation order."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM chunks WHERE document_id = ? ORDER BY id ASC",
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(row) for row in rows]
    finally:
        conn.close()


def delete_document(document_id: str) -> Optional[Document]:
    """Delete a document with its chunks and data sources in one transaction.

    Returns:
        The deleted Document (so the caller can remove its stored bytes),
        or None if it didn't exist
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
        row = cursor.fetchone()
        if row is None:
            return None

        cursor.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        chunks_deleted = cursor.rowcount
        cursor.execute("DELETE FROM data_sources WHERE document_id = ?", (document_id,))
        cursor.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        conn.commit()

        logger.info("document_deleted", document_id=document_id, chunks_deleted=chunks_deleted)
        return _row_to_document(row)

    except Exception as e:
        conn.rollback()
        logger.error("document_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_chunk_count() -> int:
    """Get the total number of chunks in the database."""
    conn = get_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
    finally:
        conn.close()
