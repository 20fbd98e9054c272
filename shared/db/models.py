"""
Database models for uploaded documents and their chunks.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRow(Base):
    """One uploaded source file."""
    __tablename__ = "knowledge_documents"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(1024), nullable=False)
    status = Column(String(16), nullable=False, index=True)
    storage_url = Column(Text, nullable=True)
    size_bytes = Column(Integer, nullable=False)
    content_type = Column(String(255), nullable=False)
    failure_reason = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)


class ChunkRow(Base):
    """One chunk of a document's extracted text."""
    __tablename__ = "document_chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index", name="uq_document_chunk_index"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(36), ForeignKey("knowledge_documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    char_count = Column(Integer, nullable=False)
