"""Maintenance runner entry point.

Operational commands against the stores the API server uses.

Usage:
    python -m maintenance.maintenance_runner init
    python -m maintenance.maintenance_runner inspect [--limit N]
    python -m maintenance.maintenance_runner reconcile
"""

import argparse
import asyncio
import json

from services.documents.DocumentService import DocumentService
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.db.DocumentRepository import DocumentRepository
from shared.db.database import create_async_db_engine
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


async def do_init(config: HelperConfig, repository: DocumentRepository) -> None:
    """Create the relational tables and ensure the collection with its payload indexes."""
    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    try:
        await rag_client.boot()
        await rag_client.do_ensure_collection(embed_client.get_vector_size(), embed_client.get_distance())
        await repository.do_create_tables()
    finally:
        await rag_client.close()
    config.get_logger().info(
        "Initialized collection '%s' (%d dims, %s) and relational tables.",
        rag_client.get_collection_name(), embed_client.get_vector_size(), embed_client.get_distance(),
        color="green",
    )


async def do_inspect(config: HelperConfig, limit: int) -> None:
    """Print the collection's point count and the payloads of the first points."""
    logger = config.get_logger()
    rag_client = RAGClientManager(helper_config=config).get_client()
    try:
        await rag_client.boot()
        if not await rag_client.do_existence_check():
            logger.warning("Collection '%s' does not exist. Run 'init' first.", rag_client.get_collection_name())
            return
        total = await rag_client.do_count()
        logger.info("Collection '%s' holds %d point(s).", rag_client.get_collection_name(), total)
        page = await rag_client.do_scroll(with_payload=True, with_vector=False, limit=limit)
        for point in page.result:
            payload = dict(point.get("payload") or {})
            text = str(payload.pop("chunk_text", ""))
            payload["chunk_text"] = text[:80] + ("..." if len(text) > 80 else "")
            print(json.dumps({"id": point.get("id"), "payload": payload}, ensure_ascii=False))
    finally:
        await rag_client.close()


async def do_reconcile(config: HelperConfig, repository: DocumentRepository) -> int:
    """Run the stale-document sweep once.

    The vector index is not touched by the sweep, so its client is never booted.
    """
    rag_client = RAGClientManager(helper_config=config).get_client()
    document_service = DocumentService(helper_config=config, repository=repository, rag_client=rag_client)
    count = await document_service.do_reconcile_stale_documents()
    config.get_logger().info("Reconciliation finished: %d document(s) marked failed.", count)
    return count


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="maintenance_runner", description="Knowledge base maintenance commands.")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init", help="create tables, collection and payload indexes")
    inspect_parser = subparsers.add_parser("inspect", help="show point count and sample payloads")
    inspect_parser.add_argument("--limit", type=int, default=10, help="number of points to print")
    subparsers.add_parser("reconcile", help="mark stale processing documents as failed")
    args = parser.parse_args(argv)

    logger = setup_logging()
    config = HelperConfig(logger=logger)

    if args.command == "inspect":
        await do_inspect(config, args.limit)
        return

    repository = DocumentRepository(helper_config=config, engine=create_async_db_engine(config))
    try:
        if args.command == "init":
            await do_init(config, repository)
        else:
            await do_reconcile(config, repository)
    finally:
        await repository.close()


if __name__ == "__main__":
    asyncio.run(main())
