"""FastAPI application entry point for the knowledge base service."""

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.errors import ClientError
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.blob.BlobClientManager import BlobClientManager
from shared.clients.extract.TextExtractor import TextExtractor
from shared.db.database import create_async_db_engine
from shared.db.DocumentRepository import DocumentRepository
from services.ingestion.IngestionService import IngestionService
from services.ingestion.IngestionExecutor import IngestionExecutor
from services.ingestion.UploadPolicy import UploadPolicy
from services.documents.DocumentService import DocumentService
from services.retrieval.RetrievalService import RetrievalService
from server.routers.DocumentRouter import router as document_router
from server.routers.QueryRouter import router as query_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    helper_config = HelperConfig(logger=logging)
    app.state.helper_config = helper_config
    # fail at startup rather than on the first request
    helper_config.get_string_val("APP_API_KEY")

    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    rag_client = RAGClientManager(helper_config=helper_config).get_client()
    blob_client = BlobClientManager(helper_config=helper_config).get_client()

    logging.info("Booting all clients...")
    for client in (embed_client, rag_client):
        await client.boot(transport=app.state.http_transport)
    logging.info("All clients booted successfully.")

    repository = DocumentRepository(helper_config=helper_config, engine=create_async_db_engine(helper_config))
    sweep_task: asyncio.Task | None = None
    executor: IngestionExecutor | None = None
    try:
        await check_connections(embed_client, rag_client)
        await rag_client.do_ensure_collection(embed_client.get_vector_size(), embed_client.get_distance())
        await repository.do_create_tables()

        ingestion_service = IngestionService(
            helper_config=helper_config,
            repository=repository,
            embed_client=embed_client,
            rag_client=rag_client,
            extractor=TextExtractor(helper_config=helper_config),
            blob_client=blob_client,
        )
        executor = IngestionExecutor(helper_config=helper_config, ingestion_service=ingestion_service)
        document_service = DocumentService(
            helper_config=helper_config,
            repository=repository,
            rag_client=rag_client,
            blob_client=blob_client,
            ingestion_executor=executor,
        )

        app.state.embed_client = embed_client
        app.state.rag_client = rag_client
        app.state.blob_client = blob_client
        app.state.repository = repository
        app.state.upload_policy = UploadPolicy(helper_config=helper_config)
        app.state.ingestion_executor = executor
        app.state.document_service = document_service
        app.state.retrieval_service = RetrievalService(
            helper_config=helper_config,
            embed_client=embed_client,
            rag_client=rag_client,
        )

        # documents left in processing by a previous process
        await document_service.do_reconcile_stale_documents()
        sweep_interval = float(helper_config.get_number_val("INGEST_SWEEP_INTERVAL_SECONDS", default=300))
        if sweep_interval > 0:
            sweep_task = asyncio.create_task(run_stale_sweep(document_service, sweep_interval), name="stale-sweep")

        # while the app is running...
        yield
    finally:
        # when the app shuts down, finish background work and close all connections
        logging.info("Shutting down, closing all clients...")
        if sweep_task is not None:
            sweep_task.cancel()
            await asyncio.gather(sweep_task, return_exceptions=True)
        if executor is not None:
            await executor.do_drain()
        for client in (embed_client, rag_client):
            await client.close()
        await repository.close()
        logging.info("All clients closed.")


def create_app(http_transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the application.

    Args:
        http_transport (httpx.AsyncBaseTransport | None): Transport for the embedding and
            vector index clients. None uses the network; tests pass an httpx.MockTransport.
    """
    app = FastAPI(
        title="knowledge_base",
        description=(
            "Document ingestion and retrieval for retrieval-augmented chat. "
            "Uploaded files are extracted, chunked, embedded and indexed per user in a vector index; "
            "POST /query returns the caller's most similar chunks."
        ),
        version=app_version,
        lifespan=lifespan,
    )
    app.state.http_transport = http_transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(document_router)
    app.include_router(query_router)

    @app.get("/healthz", tags=["health"])
    async def healthz() -> dict:
        return {"status": "ok", "version": app_version}

    return app


async def check_connections(embed_client: EmbedClientInterface, rag_client: RAGClientInterface) -> None:
    """Check connectivity to the configured backends on startup.

    Embedding failures are non-fatal (uploads will fail later, but the server stays up).
    A vector index failure is fatal: the collection cannot be ensured without it.

    Raises:
        ClientError: If the vector index is not reachable.
    """
    try:
        result: httpx.Response = await embed_client.do_healthcheck()
        if not result.is_success:
            logging.warning(
                "Embedding client '%s' is not reachable (status %d). Ingestion and retrieval may fail.",
                embed_client.get_engine_name(),
                result.status_code,
            )
    except ClientError as e:
        logging.warning("Embedding client '%s' is not reachable: %s", embed_client.get_engine_name(), e)

    result = await rag_client.do_healthcheck()
    if not result.is_success:
        raise ClientError(
            f"RAG client '{rag_client.get_engine_name()}' is not reachable "
            f"(status {result.status_code}). Cannot index or search."
        )


async def run_stale_sweep(document_service: DocumentService, interval: float) -> None:
    """Periodically fail documents orphaned in processing."""
    while True:
        await asyncio.sleep(interval)
        try:
            await document_service.do_reconcile_stale_documents()
        except Exception:
            logging.exception("Stale document sweep failed, retrying in %.0fs.", interval)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting knowledge_base API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
