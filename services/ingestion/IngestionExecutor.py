"""Background executor for ingestion jobs.

Jobs run as asyncio tasks inside the API process. A semaphore bounds how many
pipelines run at once; the executor keeps a reference to every task until it
finishes so none are garbage collected mid-flight.
"""

import asyncio

from services.ingestion.IngestionService import IngestionService
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import IngestionJob

DEFAULT_MAX_CONCURRENCY = 4


class IngestionExecutor:
    """Schedules IngestionService.do_ingest for accepted uploads."""

    def __init__(self, helper_config: HelperConfig, ingestion_service: IngestionService) -> None:
        self.logging = helper_config.get_logger()
        self._ingestion_service = ingestion_service
        max_concurrency = int(helper_config.get_number_val("INGEST_MAX_CONCURRENCY", default=DEFAULT_MAX_CONCURRENCY))
        if max_concurrency < 1:
            raise ValueError(f"INGEST_MAX_CONCURRENCY must be at least 1, got {max_concurrency}.")
        self._sem = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._tasks_by_document: dict[str, asyncio.Task] = {}

    def get_pending_count(self) -> int:
        return len(self._tasks)

    ##########################################
    ############### SCHEDULING ###############
    ##########################################

    def submit(self, job: IngestionJob) -> asyncio.Task:
        """Start processing job in the background and return immediately.

        Must be called from within the running event loop.
        """
        task = asyncio.create_task(self._run(job), name=f"ingest-{job.document_id}")
        self._tasks.add(task)
        self._tasks_by_document[job.document_id] = task
        task.add_done_callback(lambda done: self._on_done(job.document_id, done))
        self.logging.debug("Queued ingestion of document %s (%d pending).", job.document_id, len(self._tasks))
        return task

    async def do_cancel(self, document_id: str) -> bool:
        """Cancel the job of document_id and wait until it has stopped.

        A cancelled pipeline writes nothing further; what it already wrote is
        left for the caller to remove.

        Returns:
            bool: True if a running job was cancelled.
        """
        task = self._tasks_by_document.get(document_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self.logging.info("Cancelled ingestion of document %s.", document_id)
        return True

    async def _run(self, job: IngestionJob) -> None:
        async with self._sem:
            await self._ingestion_service.do_ingest(job)

    def _on_done(self, document_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._tasks_by_document.get(document_id) is task:
            del self._tasks_by_document[document_id]
        if task.cancelled():
            self.logging.warning("Ingestion task %s was cancelled.", task.get_name())
            return
        error = task.exception()
        if error is not None:
            # do_ingest records its own failures, anything here escaped it
            self.logging.error("Ingestion task %s crashed: %r", task.get_name(), error)

    ##########################################
    ############### SHUTDOWN #################
    ##########################################

    async def do_drain(self, timeout: float = 30.0) -> None:
        """Wait up to timeout seconds for running jobs, then cancel the rest.

        Cancelled documents stay "processing" until the stale sweep fails them.
        """
        if not self._tasks:
            return
        self.logging.info("Waiting for %d ingestion job(s) to finish...", len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            self.logging.warning("Cancelling %d unfinished ingestion job(s).", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
