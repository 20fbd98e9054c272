from pydantic import BaseModel

from shared.models.document import DocumentStatus
from shared.models.retrieval import RetrievedChunk


class UploadResponse(BaseModel):
    id: str
    status: DocumentStatus


class DeleteResponse(BaseModel):
    success: bool


class QueryResponse(BaseModel):
    query: str
    results: list[RetrievedChunk]
    total: int
