"""Pydantic models for retrieval results."""

from pydantic import BaseModel


class RetrievedChunk(BaseModel):
    """A single chunk returned by the retrieval service, ranked by score."""

    text: str
    source_document_id: str
    title: str | None = None
    chunk_index: int
    score: float
