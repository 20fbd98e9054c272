import asyncio

import pytest

from services.ingestion.IngestionExecutor import IngestionExecutor
from shared.models.document import DocumentStatus, IngestionJob


class RecordingIngestionService:
    def __init__(self, delay: float = 0.01, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.active = 0
        self.max_active = 0
        self.done: list[str] = []

    async def do_ingest(self, job: IngestionJob) -> DocumentStatus:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.error:
                raise self.error
            self.done.append(job.document_id)
            return DocumentStatus.COMPLETED
        finally:
            self.active -= 1


def _job(document_id: str) -> IngestionJob:
    return IngestionJob(document_id=document_id, owner_id="owner-a", filename="a.txt", content_type="text/plain", data=b"x")


def test_concurrency_is_bounded(helper_config, monkeypatch):
    monkeypatch.setenv("INGEST_MAX_CONCURRENCY", "2")
    service = RecordingIngestionService()

    async def scenario():
        executor = IngestionExecutor(helper_config=helper_config, ingestion_service=service)
        tasks = [executor.submit(_job(f"doc-{i}")) for i in range(6)]
        await asyncio.gather(*tasks)
        return executor.get_pending_count()

    pending = asyncio.run(scenario())

    assert pending == 0
    assert service.max_active == 2
    assert sorted(service.done) == [f"doc-{i}" for i in range(6)]


def test_escaped_errors_are_logged(helper_config, caplog):
    service = RecordingIngestionService(error=RuntimeError("boom"))

    async def scenario():
        executor = IngestionExecutor(helper_config=helper_config, ingestion_service=service)
        task = executor.submit(_job("doc-1"))
        await asyncio.wait([task])
        # let the done callback run
        await asyncio.sleep(0)
        return executor.get_pending_count()

    with caplog.at_level("ERROR"):
        pending = asyncio.run(scenario())

    assert pending == 0
    assert any("crashed" in record.getMessage() for record in caplog.records)


def test_drain_cancels_unfinished_jobs(helper_config):
    service = RecordingIngestionService(delay=10)

    async def scenario():
        executor = IngestionExecutor(helper_config=helper_config, ingestion_service=service)
        task = executor.submit(_job("doc-1"))
        await asyncio.sleep(0)
        await executor.do_drain(timeout=0.05)
        return task, executor.get_pending_count()

    task, pending = asyncio.run(scenario())

    assert task.cancelled()
    assert pending == 0
    assert service.done == []


def test_invalid_concurrency_is_rejected(helper_config, monkeypatch):
    monkeypatch.setenv("INGEST_MAX_CONCURRENCY", "0")
    with pytest.raises(ValueError):
        IngestionExecutor(helper_config=helper_config, ingestion_service=RecordingIngestionService())


def test_cancel_stops_only_the_given_document(helper_config):
    service = RecordingIngestionService(delay=0.2)

    async def scenario():
        executor = IngestionExecutor(helper_config=helper_config, ingestion_service=service)
        doomed = executor.submit(_job("doc-1"))
        kept = executor.submit(_job("doc-2"))
        await asyncio.sleep(0)
        cancelled = await executor.do_cancel("doc-1")
        unknown = await executor.do_cancel("doc-unknown")
        await kept
        again = await executor.do_cancel("doc-2")
        return doomed, cancelled, unknown, again, executor.get_pending_count()

    doomed, cancelled, unknown, again, pending = asyncio.run(scenario())

    assert cancelled is True
    assert doomed.cancelled()
    assert unknown is False
    assert again is False
    assert pending == 0
    assert service.done == ["doc-2"]
