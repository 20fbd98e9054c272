"""Relational persistence for documents and chunk rows."""

import uuid
from datetime import datetime

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shared.db.database import create_async_session_maker
from shared.db.models import Base, ChunkRow, DocumentRow, utcnow
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DocumentChunk, DocumentMetadata, DocumentStatus, KnowledgeDocument


class DocumentRepository:
    """Reads and writes document and chunk rows.

    Single-row updates are transactional. Chunk batches are committed one by
    one and are not atomic with the vector index writes.
    """

    def __init__(self, helper_config: HelperConfig, engine: AsyncEngine) -> None:
        self.logging = helper_config.get_logger()
        self._engine = engine
        self._session_maker: async_sessionmaker[AsyncSession] = create_async_session_maker(engine)

    ##########################################
    ############### MAPPING ##################
    ##########################################

    @staticmethod
    def _to_model(row: DocumentRow) -> KnowledgeDocument:
        return KnowledgeDocument(
            id=row.id,
            owner_id=row.owner_id,
            title=row.title,
            status=DocumentStatus(row.status),
            storage_url=row.storage_url or None,
            metadata=DocumentMetadata(size=row.size_bytes, content_type=row.content_type),
            failure_reason=row.failure_reason,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    ##########################################
    ################ SCHEMA ##################
    ##########################################

    async def do_create_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def do_insert_document(
        self,
        owner_id: str,
        title: str,
        metadata: DocumentMetadata,
        status: DocumentStatus = DocumentStatus.PROCESSING,
    ) -> KnowledgeDocument:
        """Create a document row and return it.

        Args:
            owner_id (str): The uploading user.
            title (str): Original filename.
            metadata (DocumentMetadata): Size and declared content type.
            status (DocumentStatus): Initial status, "processing" for accepted uploads.

        Returns:
            KnowledgeDocument: The stored document with its new id.
        """
        row = DocumentRow(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            title=title,
            status=status.value,
            storage_url=None,
            size_bytes=metadata.size,
            content_type=metadata.content_type,
            created_at=utcnow(),
        )
        async with self._session_maker() as session:
            session.add(row)
            await session.commit()
            return self._to_model(row)

    async def do_get_document(self, document_id: str, owner_id: str | None = None) -> KnowledgeDocument | None:
        """Fetch a document, optionally only if it belongs to owner_id."""
        stmt = select(DocumentRow).where(DocumentRow.id == document_id)
        if owner_id is not None:
            stmt = stmt.where(DocumentRow.owner_id == owner_id)
        async with self._session_maker() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_model(row) if row else None

    async def do_list_documents(self, owner_id: str) -> list[KnowledgeDocument]:
        """All documents of one owner, newest first."""
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.owner_id == owner_id)
            .order_by(DocumentRow.created_at.desc(), DocumentRow.id.desc())
        )
        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_model(row) for row in rows]

    async def do_update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        storage_url: str | None = None,
        failure_reason: str | None = None,
    ) -> bool:
        """Move a document into a terminal state.

        The update only applies while the document is still pending or
        processing, so a status never regresses and is set at most once.

        Returns:
            bool: True if the row changed, False if it was missing or already terminal.
        """
        values: dict = {"status": status.value, "updated_at": utcnow()}
        if storage_url is not None:
            values["storage_url"] = storage_url
        if failure_reason is not None:
            values["failure_reason"] = failure_reason

        open_states = [state.value for state in DocumentStatus.open_states()]
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id == document_id, DocumentRow.status.in_(open_states))
            .values(**values)
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
        changed = result.rowcount > 0
        if not changed:
            self.logging.warning(
                "Status of document %s not changed to %s: missing or already terminal.",
                document_id, status.value,
            )
        return changed

    async def do_mark_stale_documents_failed(self, older_than: datetime, failure_reason: str = "stale_processing") -> int:
        """Fail documents that have been processing since before older_than.

        Returns:
            int: Number of documents marked failed.
        """
        open_states = [state.value for state in DocumentStatus.open_states()]
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.status.in_(open_states), DocumentRow.created_at < older_than)
            .values(status=DocumentStatus.FAILED.value, failure_reason=failure_reason, updated_at=utcnow())
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount

    async def do_delete_document(self, document_id: str) -> bool:
        """Delete a document and its chunk rows in one transaction.

        Returns:
            bool: True if the document row existed.
        """
        async with self._session_maker() as session:
            async with session.begin():
                await session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
                result = await session.execute(delete(DocumentRow).where(DocumentRow.id == document_id))
        return result.rowcount > 0

    ##########################################
    ################ CHUNKS ##################
    ##########################################

    async def do_insert_chunks(self, document_id: str, chunks: list[DocumentChunk], batch_size: int = 500) -> int:
        """Insert chunk rows in batches, one commit per batch.

        Args:
            document_id (str): Owning document.
            chunks (list[DocumentChunk]): Chunks in index order.
            batch_size (int): Rows per insert statement.

        Returns:
            int: Number of rows inserted.

        Raises:
            ValueError: If a chunk belongs to another document or batch_size is not positive.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}.")
        for chunk in chunks:
            if chunk.document_id != document_id:
                raise ValueError(f"Chunk {chunk.chunk_index} belongs to document {chunk.document_id}, not {document_id}.")

        for batch_start in range(0, len(chunks), batch_size):
            batch = chunks[batch_start: batch_start + batch_size]
            async with self._session_maker() as session:
                await session.execute(insert(ChunkRow), [chunk.model_dump() for chunk in batch])
                await session.commit()
        return len(chunks)

    async def do_delete_chunks(self, document_id: str) -> int:
        async with self._session_maker() as session:
            result = await session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
            await session.commit()
        return result.rowcount

    async def do_list_chunks(self, document_id: str) -> list[DocumentChunk]:
        stmt = select(ChunkRow).where(ChunkRow.document_id == document_id).order_by(ChunkRow.chunk_index)
        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [DocumentChunk.model_validate(row) for row in rows]

    async def do_count_chunks(self, document_id: str) -> int:
        stmt = select(func.count()).select_from(ChunkRow).where(ChunkRow.document_id == document_id)
        async with self._session_maker() as session:
            return int((await session.execute(stmt)).scalar_one())
