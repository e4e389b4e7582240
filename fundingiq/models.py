"""Records for documents, their chunks and provenance."""
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class DocumentStatus(str, Enum):
    """Lifecycle of an uploaded document. READY and ERROR are terminal."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


TEXT_TYPES = {"text/plain", "text/markdown", "text/x-markdown", "text/csv"}
TEXT_EXTENSIONS = {".txt", ".md", ".markdown", ".csv"}
JSON_TYPES = {"application/json"}
JSON_EXTENSIONS = {".json"}
PDF_TYPES = {"application/pdf"}
PDF_EXTENSIONS = {".pdf"}
TABULAR_TYPES = {"text/csv", ".csv"}

# MIME types too generic to dispatch on
GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

# Extraction kind -> category tag shown next to a document
CATEGORY_BY_KIND = {
    "pdf": "PDF",
    "json": "DATA",
    "text": "TEXT",
}


def _declared_type(declared_type: Optional[str], file_name: Optional[str]) -> str:
    """Normalized MIME type or extension, falling back to the file suffix."""
    kind = (declared_type or "").split(";")[0].strip().lower()
    if kind and "/" not in kind and not kind.startswith("."):
        kind = "." + kind

    if kind in GENERIC_TYPES and file_name:
        kind = Path(file_name).suffix.lower()
    return kind


def resolve_kind(declared_type: Optional[str], file_name: Optional[str] = None) -> str:
    """Classify a document as 'text', 'json', 'pdf' or 'other'.

    `declared_type` may be a MIME type (`application/pdf`) or an extension
    (`.pdf` or `pdf`). The file name's suffix is consulted when the declared
    type is missing or generic.
    """
    kind = _declared_type(declared_type, file_name)

    if kind in TEXT_TYPES or kind in TEXT_EXTENSIONS:
        return "text"
    if kind in JSON_TYPES or kind in JSON_EXTENSIONS:
        return "json"
    if kind in PDF_TYPES or kind in PDF_EXTENSIONS:
        return "pdf"
    return "other"


def category_for(file_type: Optional[str], file_name: Optional[str] = None) -> str:
    """Category tag for a document, from the same kind used to extract it.

    CSV is extracted as text but tagged DATA.
    """
    if _declared_type(file_type, file_name) in TABULAR_TYPES:
        return "DATA"
    return CATEGORY_BY_KIND.get(resolve_kind(file_type, file_name), "OTHER")


@dataclass(frozen=True)
class Document:
    """An uploaded document and its ingestion state."""

    id: str
    file_name: str
    file_type: str
    file_size: int
    file_path: str
    status: DocumentStatus
    category: str
    chunks_count: int
    created_at: str
    updated_at: str
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class ChunkRecord:
    """A persisted chunk.

    `keywords` is None when no keywords were synthesized for the chunk,
    either because it fell past the per-document limit or synthesis failed.
    """

    id: int
    document_id: str
    run_id: str
    chunk_index: int
    content: str
    keywords: Optional[List[str]]
    created_at: str


@dataclass(frozen=True)
class SourceRef:
    """Provenance entry for a query answer."""

    name: str
    category: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "category": self.category}
