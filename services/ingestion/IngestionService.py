"""Ingestion service.

Runs the background pipeline for one accepted upload: extract text, keep a
durable copy, chunk, embed, upsert vector points, persist chunk rows and
finally move the document to completed or failed.
"""

import asyncio
from pathlib import PurePath

from services.ingestion.text_chunking import DEFAULT_MAX_CHARS, DEFAULT_OVERLAP_CHARS, chunk_text
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.extract.TextExtractor import TextExtractor
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorPayload, VectorPoint
from shared.db.DocumentRepository import DocumentRepository
from shared.errors import ConfigurationError
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DocumentChunk, DocumentStatus, IngestionJob, KnowledgeDocument

# failure reason recorded for each pipeline stage
STAGE_FAILURE_REASONS = {
    "extract": "extraction_failed",
    "embed": "embedding_failed",
    "index": "indexing_failed",
    "persist": "persistence_failed",
    "finalize": "finalize_failed",
}


class DocumentDeletedError(Exception):
    """The document row was deleted while its pipeline was running."""


class IngestionService:
    """Owns the terminal status transition of uploaded documents."""

    def __init__(
        self,
        helper_config: HelperConfig,
        repository: DocumentRepository,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        extractor: TextExtractor,
        blob_client: BlobClientInterface | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._extractor = extractor
        self._blob_client = blob_client

        self.max_chars = int(helper_config.get_number_val("INGEST_CHUNK_MAX_CHARS", default=DEFAULT_MAX_CHARS))
        self.overlap_chars = int(helper_config.get_number_val("INGEST_CHUNK_OVERLAP", default=DEFAULT_OVERLAP_CHARS))
        self.db_batch_size = int(helper_config.get_number_val("INGEST_DB_BATCH_SIZE", default=500))
        if self.overlap_chars >= self.max_chars:
            raise ValueError(
                f"INGEST_CHUNK_OVERLAP ({self.overlap_chars}) must be smaller than INGEST_CHUNK_MAX_CHARS ({self.max_chars})."
            )

    ##########################################
    ############### PIPELINE #################
    ##########################################

    async def do_ingest(self, job: IngestionJob) -> DocumentStatus:
        """Run the full pipeline for one document. Never raises, cancellation aside.

        Any error is caught here, logged and turns the document into "failed".
        Vector points or chunk rows written before the error are left in place;
        deleting the document removes them.

        The document row is checked before any write and again when the
        terminal status is set. If the document was deleted in the meantime,
        whatever this run wrote is removed again and the run ends as "failed".

        Args:
            job (IngestionJob): The accepted upload.

        Returns:
            DocumentStatus: The terminal status the document ended in.
        """
        stage = "extract"
        storage_url: str | None = None
        chunks: list[str] = []
        self.logging.info(
            "Ingesting document %s ('%s', %s, %d bytes) for owner %s",
            job.document_id, job.filename, job.content_type, len(job.data), job.owner_id,
        )
        try:
            await self._ensure_document_exists(job)

            text = await self._extractor.do_extract_text(job.data, job.content_type)

            storage_url = await self._store_durable_copy(job)

            chunks = chunk_text(text, max_chars=self.max_chars, overlap_chars=self.overlap_chars)
            if not chunks:
                self.logging.info("Document %s produced no chunks.", job.document_id)

            stage = "embed"
            vectors = await self._embed_client.do_embed(chunks) if chunks else []

            stage = "index"
            points = self._build_points(job, chunks, vectors)
            await self._ensure_document_exists(job)
            if points:
                batches = await self._rag_client.do_upsert_points(points)
                self.logging.debug("Document %s: %d points upserted in %d batches.", job.document_id, len(points), batches)

            stage = "persist"
            await self._ensure_document_exists(job)
            await self._repository.do_insert_chunks(
                job.document_id,
                self._build_chunk_rows(job, chunks),
                batch_size=self.db_batch_size,
            )

            stage = "finalize"
            updated = await self._repository.do_update_document_status(
                job.document_id, DocumentStatus.COMPLETED, storage_url=storage_url,
            )
            if not updated:
                document = await self._ensure_document_exists(job)
                # already terminal, e.g. failed by the stale sweep
                self.logging.warning(
                    "Document %s finished ingestion but was already %s.", job.document_id, document.status.value,
                )
                return document.status
        except asyncio.CancelledError:
            # the row only learns its storage location on completion
            await self._discard_durable_copy(job, storage_url)
            raise
        except DocumentDeletedError:
            await self._discard_writes(job, storage_url)
            return DocumentStatus.FAILED
        except Exception as e:
            if await self._is_deleted(job):
                await self._discard_writes(job, storage_url)
            else:
                await self._mark_failed(job, stage, e)
            return DocumentStatus.FAILED

        self.logging.info(
            "Document %s ('%s') completed: %d chunks indexed.",
            job.document_id, job.filename, len(chunks), color="green",
        )
        return DocumentStatus.COMPLETED

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _ensure_document_exists(self, job: IngestionJob) -> KnowledgeDocument:
        document = await self._repository.do_get_document(job.document_id)
        if document is None:
            raise DocumentDeletedError(f"Document {job.document_id} was deleted during ingestion.")
        return document

    async def _is_deleted(self, job: IngestionJob) -> bool:
        try:
            return await self._repository.do_get_document(job.document_id) is None
        except Exception as e:
            self.logging.error("Could not look up document %s: %r", job.document_id, e)
            return False

    async def _discard_writes(self, job: IngestionJob, storage_url: str | None) -> None:
        """Remove vector points, chunk rows and the durable copy of a deleted document."""
        self.logging.warning(
            "Document %s was deleted during ingestion, discarding what was written for it.", job.document_id,
        )
        try:
            await self._rag_client.do_delete_by_document_id(job.document_id)
        except Exception as e:
            self.logging.error("Could not delete vector points of deleted document %s: %r", job.document_id, e)
        try:
            await self._repository.do_delete_chunks(job.document_id)
        except Exception as e:
            self.logging.error("Could not delete chunk rows of deleted document %s: %r", job.document_id, e)
        await self._discard_durable_copy(job, storage_url)

    async def _discard_durable_copy(self, job: IngestionJob, storage_url: str | None) -> None:
        if not storage_url or self._blob_client is None:
            return
        try:
            await self._blob_client.do_delete(storage_url)
        except Exception as e:
            self.logging.error("Could not delete durable copy of document %s: %r", job.document_id, e)

    async def _store_durable_copy(self, job: IngestionJob) -> str | None:
        """Best-effort copy of the raw bytes; a failure only leaves the storage location empty."""
        if self._blob_client is None:
            return None
        name = f"{job.document_id}/{PurePath(job.filename).name}"
        try:
            return await self._blob_client.do_store(name, job.data, job.content_type)
        except Exception as e:
            self.logging.error(
                "Durable copy of document %s failed, continuing without storage location: %r",
                job.document_id, e,
            )
            return None

    def _build_points(self, job: IngestionJob, chunks: list[str], vectors: list[list[float]]) -> list[VectorPoint]:
        if len(vectors) != len(chunks):
            raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks.")
        return [
            VectorPoint(
                vector=vector,
                payload=VectorPayload(
                    document_id=job.document_id,
                    chunk_index=chunk_index,
                    chunk_text=chunk,
                    owner_id=job.owner_id,
                    title=job.filename,
                ),
            )
            for chunk_index, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]

    def _build_chunk_rows(self, job: IngestionJob, chunks: list[str]) -> list[DocumentChunk]:
        return [
            DocumentChunk(document_id=job.document_id, chunk_index=chunk_index, content=chunk, char_count=len(chunk))
            for chunk_index, chunk in enumerate(chunks)
        ]

    async def _mark_failed(self, job: IngestionJob, stage: str, error: Exception) -> None:
        if isinstance(error, ConfigurationError):
            reason = "configuration_error"
            self.logging.critical(
                "Configuration error while ingesting document %s at stage '%s': %s",
                job.document_id, stage, error,
            )
        else:
            reason = STAGE_FAILURE_REASONS[stage]
            self.logging.error(
                "Ingestion of document %s failed at stage '%s': %r",
                job.document_id, stage, error,
            )
        try:
            await self._repository.do_update_document_status(
                job.document_id, DocumentStatus.FAILED, failure_reason=reason,
            )
        except Exception:
            # nothing else can record the failure, the stale sweep will pick it up
            self.logging.exception("Could not mark document %s as failed.", job.document_id)
