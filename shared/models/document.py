"""Pydantic models for uploaded documents and their chunks.

Hierarchy:
  DocumentStatus: lifecycle states of an uploaded document.
  DocumentMetadata: declared facts about the uploaded file.
  KnowledgeDocument: one uploaded source file as stored in the relational store.
  DocumentChunk: one trimmed slice of a document's extracted text.
  IngestionJob: unit of work handed to the background executor.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def open_states(cls) -> tuple["DocumentStatus", ...]:
        """States from which a terminal transition is still allowed."""
        return (cls.PENDING, cls.PROCESSING)

    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class DocumentMetadata(BaseModel):
    size: int
    content_type: str


class KnowledgeDocument(BaseModel):
    """A document as seen by its owner.

    failure_reason is a fixed, non-sensitive vocabulary (e.g. "embedding_failed")
    and is only set on failed documents.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    title: str
    status: DocumentStatus
    storage_url: str | None = None
    metadata: DocumentMetadata
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class DocumentChunk(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: str
    chunk_index: int
    content: str
    char_count: int


class IngestionJob(BaseModel):
    """Everything the background pipeline needs to process one upload.

    The raw bytes travel with the job so the request can return before
    anything is extracted or stored.
    """

    document_id: str
    owner_id: str
    filename: str
    content_type: str
    data: bytes
