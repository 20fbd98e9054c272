import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from shared.db.DocumentRepository import DocumentRepository
from shared.db.database import create_async_db_engine
from shared.db.models import DocumentRow, utcnow
from shared.models.document import DocumentChunk, DocumentMetadata, DocumentStatus


def _run(helper_config, scenario):
    async def _wrapped():
        repository = DocumentRepository(helper_config=helper_config, engine=create_async_db_engine(helper_config))
        await repository.do_create_tables()
        try:
            return await scenario(repository)
        finally:
            await repository.close()

    return asyncio.run(_wrapped())


def _metadata(size: int = 10) -> DocumentMetadata:
    return DocumentMetadata(size=size, content_type="text/plain")


def _chunks(document_id: str, count: int) -> list[DocumentChunk]:
    return [
        DocumentChunk(document_id=document_id, chunk_index=i, content=f"chunk {i}", char_count=len(f"chunk {i}"))
        for i in range(count)
    ]


def test_insert_and_get_document(helper_config):
    async def scenario(repository):
        created = await repository.do_insert_document("owner-a", "notes.txt", _metadata(42))
        fetched = await repository.do_get_document(created.id)
        foreign = await repository.do_get_document(created.id, owner_id="owner-b")
        return created, fetched, foreign

    created, fetched, foreign = _run(helper_config, scenario)

    assert created.status == DocumentStatus.PROCESSING
    assert fetched.id == created.id
    assert fetched.title == "notes.txt"
    assert fetched.metadata.size == 42
    assert fetched.storage_url is None
    assert foreign is None


def test_list_is_per_owner_and_newest_first(helper_config):
    async def scenario(repository):
        first = await repository.do_insert_document("owner-a", "first.txt", _metadata())
        await asyncio.sleep(0.01)
        second = await repository.do_insert_document("owner-a", "second.txt", _metadata())
        await repository.do_insert_document("owner-b", "other.txt", _metadata())
        return first, second, await repository.do_list_documents("owner-a")

    first, second, documents = _run(helper_config, scenario)

    assert [document.id for document in documents] == [second.id, first.id]


def test_status_update_is_monotonic(helper_config):
    async def scenario(repository):
        document = await repository.do_insert_document("owner-a", "a.txt", _metadata())
        completed = await repository.do_update_document_status(document.id, DocumentStatus.COMPLETED, storage_url="file:///a")
        regressed = await repository.do_update_document_status(document.id, DocumentStatus.FAILED, failure_reason="embedding_failed")
        return completed, regressed, await repository.do_get_document(document.id)

    completed, regressed, document = _run(helper_config, scenario)

    assert completed is True
    assert regressed is False
    assert document.status == DocumentStatus.COMPLETED
    assert document.storage_url == "file:///a"
    assert document.failure_reason is None


def test_missing_document_update_returns_false(helper_config):
    changed = _run(helper_config, lambda repository: repository.do_update_document_status("missing", DocumentStatus.FAILED))
    assert changed is False


def test_chunks_are_inserted_in_batches(helper_config):
    async def scenario(repository):
        document = await repository.do_insert_document("owner-a", "a.txt", _metadata())
        inserted = await repository.do_insert_chunks(document.id, _chunks(document.id, 7), batch_size=3)
        return inserted, await repository.do_list_chunks(document.id)

    inserted, chunks = _run(helper_config, scenario)

    assert inserted == 7
    assert [chunk.chunk_index for chunk in chunks] == list(range(7))
    assert chunks[3].content == "chunk 3"


def test_chunks_of_another_document_are_rejected(helper_config):
    async def scenario(repository):
        document = await repository.do_insert_document("owner-a", "a.txt", _metadata())
        await repository.do_insert_chunks(document.id, _chunks("someone-else", 1))

    with pytest.raises(ValueError):
        _run(helper_config, scenario)


def test_delete_removes_document_and_chunks(helper_config):
    async def scenario(repository):
        document = await repository.do_insert_document("owner-a", "a.txt", _metadata())
        await repository.do_insert_chunks(document.id, _chunks(document.id, 5))
        deleted = await repository.do_delete_document(document.id)
        deleted_again = await repository.do_delete_document(document.id)
        return (
            deleted,
            deleted_again,
            await repository.do_count_chunks(document.id),
            await repository.do_list_documents("owner-a"),
        )

    deleted, deleted_again, chunk_count, documents = _run(helper_config, scenario)

    assert deleted is True
    assert deleted_again is False
    assert chunk_count == 0
    assert documents == []


def test_stale_processing_documents_are_failed(helper_config):
    async def scenario(repository):
        stale = await repository.do_insert_document("owner-a", "stale.txt", _metadata())
        done = await repository.do_insert_document("owner-a", "done.txt", _metadata())
        await repository.do_update_document_status(done.id, DocumentStatus.COMPLETED)
        # everything created before "now + 1 minute" counts as stale
        count = await repository.do_mark_stale_documents_failed(utcnow() + timedelta(minutes=1))
        return count, await repository.do_get_document(stale.id), await repository.do_get_document(done.id)

    count, stale, done = _run(helper_config, scenario)

    assert count == 1
    assert stale.status == DocumentStatus.FAILED
    assert stale.failure_reason == "stale_processing"
    assert done.status == DocumentStatus.COMPLETED


def test_chunks_of_a_missing_document_are_rejected(helper_config):
    async def scenario(repository):
        await repository.do_insert_chunks("missing", _chunks("missing", 1))

    with pytest.raises(IntegrityError):
        _run(helper_config, scenario)


def test_removing_the_document_row_cascades_to_chunks(helper_config):
    async def scenario(repository):
        document = await repository.do_insert_document("owner-a", "a.txt", _metadata())
        await repository.do_insert_chunks(document.id, _chunks(document.id, 3))
        async with repository._session_maker() as session:
            await session.execute(delete(DocumentRow).where(DocumentRow.id == document.id))
            await session.commit()
        return await repository.do_count_chunks(document.id)

    assert _run(helper_config, scenario) == 0
