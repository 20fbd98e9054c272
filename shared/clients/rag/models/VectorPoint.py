"""VectorPoint model: one (id, vector, payload) record stored in a RAG backend."""

import uuid

from pydantic import BaseModel, Field, field_validator


class VectorPayload(BaseModel):
    """Metadata stored alongside each chunk vector.

    The owner_id field is mandatory and enforced as a security invariant on
    every upsert and search operation; it must never be empty.

    Attributes:
        document_id:  ID of the uploaded document the chunk belongs to.
        chunk_index:  Zero-based position of this chunk within the document.
        chunk_text:   Raw text content of this chunk.
        owner_id:     MANDATORY. ID of the uploading user; used for access isolation.
        title:        Original filename, for display in retrieved context.
    """

    document_id: str
    chunk_index: int
    chunk_text: str
    owner_id: str
    title: str | None = None

    @field_validator("owner_id")
    @classmethod
    def _owner_id_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("owner_id must not be empty (security invariant).")
        return value


class VectorPoint(BaseModel):
    """A point ready to be upserted. The id is freshly generated and unrelated to any chunk row id."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    vector: list[float]
    payload: VectorPayload
