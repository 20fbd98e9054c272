"""Document management: listing, lookup, cross-store deletion and the stale sweep."""

from datetime import timedelta

from services.ingestion.IngestionExecutor import IngestionExecutor
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.db.DocumentRepository import DocumentRepository
from shared.db.models import utcnow
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DocumentStatus, KnowledgeDocument

DEFAULT_STALE_AFTER_MINUTES = 60


class DocumentNotFoundError(Exception):
    """The document does not exist or belongs to another owner."""


class DocumentService:
    def __init__(
        self,
        helper_config: HelperConfig,
        repository: DocumentRepository,
        rag_client: RAGClientInterface,
        blob_client: BlobClientInterface | None = None,
        ingestion_executor: IngestionExecutor | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._rag_client = rag_client
        self._blob_client = blob_client
        self._ingestion_executor = ingestion_executor
        self.stale_after_minutes = float(
            helper_config.get_number_val("INGEST_STALE_AFTER_MINUTES", default=DEFAULT_STALE_AFTER_MINUTES)
        )

    ##########################################
    ################ READS ###################
    ##########################################

    async def do_list(self, owner_id: str) -> list[KnowledgeDocument]:
        return await self._repository.do_list_documents(owner_id)

    async def do_get(self, owner_id: str, document_id: str) -> KnowledgeDocument:
        """
        Raises:
            DocumentNotFoundError: If the document is missing or not owned by owner_id.
        """
        document = await self._repository.do_get_document(document_id, owner_id=owner_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found.")
        return document

    ##########################################
    ################ DELETE ##################
    ##########################################

    async def do_delete_document(self, owner_id: str, document_id: str) -> None:
        """Remove a document from every store.

        A running ingestion of the document is cancelled first. Then the order
        is: vector points, durable copy, the relational rows. Each step
        is attempted even if an earlier one failed; a failed step is logged and
        may leave orphans behind in that store. The relational row always goes
        last so the document stays visible until everything else was tried.

        Args:
            owner_id (str): The requesting user; only their own documents can be deleted.
            document_id (str): The document to delete.

        Raises:
            DocumentNotFoundError: If the document is missing or not owned by owner_id.
        """
        document = await self.do_get(owner_id, document_id)

        if self._ingestion_executor is not None and document.status in DocumentStatus.open_states():
            # stop the pipeline before it writes points for a vanishing row
            await self._ingestion_executor.do_cancel(document.id)

        try:
            await self._rag_client.do_delete_by_document_id(document.id)
        except Exception as e:
            self.logging.error("Could not delete vector points of document %s, orphans may remain: %r", document.id, e)

        if document.storage_url and self._blob_client is not None:
            try:
                await self._blob_client.do_delete(document.storage_url)
            except Exception as e:
                self.logging.error("Could not delete durable copy of document %s (%s): %r", document.id, document.storage_url, e)

        deleted = await self._repository.do_delete_document(document.id)
        if not deleted:
            # deleted concurrently between lookup and delete
            raise DocumentNotFoundError(f"Document {document_id} not found.")
        self.logging.info("Deleted document %s ('%s') of owner %s.", document.id, document.title, owner_id)

    ##########################################
    ############## STALE SWEEP ###############
    ##########################################

    async def do_reconcile_stale_documents(self) -> int:
        """Fail documents stuck in processing longer than INGEST_STALE_AFTER_MINUTES.

        Returns:
            int: Number of documents marked failed.
        """
        older_than = utcnow() - timedelta(minutes=self.stale_after_minutes)
        count = await self._repository.do_mark_stale_documents_failed(older_than)
        if count:
            self.logging.warning("Marked %d stale document(s) as failed.", count)
        else:
            self.logging.debug("No stale documents found.")
        return count
