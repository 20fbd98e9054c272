import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from maintenance.maintenance_runner import main
from shared.db.DocumentRepository import DocumentRepository
from shared.db.database import create_async_db_engine
from shared.db.models import DocumentRow, utcnow
from shared.models.document import DocumentMetadata, DocumentStatus


def test_reconcile_command_fails_stale_documents(helper_config):
    async def prepare() -> str:
        repository = DocumentRepository(helper_config=helper_config, engine=create_async_db_engine(helper_config))
        try:
            await repository.do_create_tables()
            document = await repository.do_insert_document("owner-a", "stale.txt", DocumentMetadata(size=1, content_type="text/plain"))
            async with repository._session_maker() as session:
                await session.execute(
                    update(DocumentRow)
                    .where(DocumentRow.id == document.id)
                    .values(created_at=utcnow() - timedelta(days=1))
                )
                await session.commit()
            return document.id
        finally:
            await repository.close()

    async def fetch(document_id: str):
        repository = DocumentRepository(helper_config=helper_config, engine=create_async_db_engine(helper_config))
        try:
            return await repository.do_get_document(document_id)
        finally:
            await repository.close()

    document_id = asyncio.run(prepare())
    asyncio.run(main(["reconcile"]))
    document = asyncio.run(fetch(document_id))

    assert document.status == DocumentStatus.FAILED
    assert document.failure_reason == "stale_processing"


def test_unknown_command_exits(helper_config):
    with pytest.raises(SystemExit):
        asyncio.run(main(["explode"]))
