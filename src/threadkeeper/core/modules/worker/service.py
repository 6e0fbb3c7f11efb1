"""Creation worker: persists allocated numbers asynchronously with bounded retries."""

import asyncio
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from threadkeeper.core.core import Service
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.worker.models import CreationTask, DeadTask, TaskState, WorkerStats
from threadkeeper.errors import BacklogFullError, DuplicateNumberError, NotFoundError

logger = structlog.get_logger(__name__)


class WorkerService(Service):
    """Bounded pool of consumers that turn creation tasks into rows.

    Uniqueness is settled at allocation time, so tasks for the same parent
    run concurrently and in any order. The unique index on the child
    collection is the final arbiter; hitting it is retried like any other
    failure and ends in the dead-letter collection once the attempt budget
    is spent.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._dead = database.get_collection("dead_tasks")
        self._queue: asyncio.Queue[CreationTask] | None = None
        self._consumers: list[asyncio.Task[None]] = []
        self._retry_timers: set[asyncio.Task[None]] = set()
        self._in_flight: dict[UUID, CreationTask] = {}

    async def on_start(self) -> None:
        await self._dead.create_index([("parent_id", 1), ("kind", 1)])
        config = self.core.config
        self._queue = asyncio.Queue(maxsize=config.worker_backlog_limit)
        self._consumers = [asyncio.create_task(self._consume(i)) for i in range(config.worker_concurrency)]
        logger.debug("worker_service_started", concurrency=config.worker_concurrency, backlog_limit=config.worker_backlog_limit)

    async def on_stop(self) -> None:
        """Drain within the grace period, then dead-letter whatever is still unfinished."""
        try:
            await asyncio.wait_for(self.drain(), self.core.config.shutdown_grace_seconds)
        except TimeoutError:
            logger.warning("worker_drain_timeout", in_flight=len(self._in_flight))

        pending = [*self._consumers, *self._retry_timers]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._consumers = []

        for task in list(self._in_flight.values()):
            if task.state != TaskState.DEAD:
                task.last_error = "shutdown"
            await self._dead_letter(task)

    @property
    def queue(self) -> asyncio.Queue[CreationTask]:
        if self._queue is None:
            raise RuntimeError("Worker service not started")
        return self._queue

    def backlog(self) -> int:
        """Tasks waiting to run: queued plus sleeping until their next retry."""
        return self.queue.qsize() + len(self._retry_timers)

    def ensure_capacity(self) -> None:
        """Reject new work before a number is allocated when the backlog is at its limit.

        Raises:
            BacklogFullError: If producers should back off
        """
        limit = self.core.config.worker_backlog_limit
        if self.backlog() >= limit:
            logger.warning("backlog_full", backlog=self.backlog(), limit=limit)
            raise BacklogFullError

    async def submit(self, task: CreationTask) -> None:
        """Enqueue a creation task for an already allocated number.

        If the queue filled up since the capacity check, the allocation cannot
        be returned, so the task is dead-lettered right away and the gap stays visible.
        """
        task.state = TaskState.PENDING
        self._in_flight[task.id] = task
        try:
            self.queue.put_nowait(task)
        except asyncio.QueueFull:
            task.last_error = "backlog_full"
            await self._dead_letter(task)
            raise BacklogFullError from None
        logger.debug("task_enqueued", task_id=task.id, kind=task.kind, parent_id=task.parent_id, number=task.number)

    async def execute(self, kind: ChildKind, parent_id: UUID, number: int, payload: dict[str, Any]) -> UUID:
        """Attempt one insert of (parent_id, number, payload) and run its side effects.

        Raises:
            DuplicateNumberError: If the number is already stored for this parent
            NotFoundError: If the parent does not exist
        """
        services = self.core.services
        if kind is ChildKind.THREAD:
            created = await services.thread.insert_thread(parent_id, number)
        else:
            created = await services.entry.insert_entry(parent_id, number, payload["body"])

        # The row is durable from here on; neither side effect may fail the task
        try:
            await services.counter_cache.increment(kind, parent_id)
        except (PyMongoError, NotFoundError) as e:
            logger.warning("counter_cache_increment_failed", kind=kind, parent_id=parent_id, error=str(e))

        if kind is ChildKind.ENTRY:
            await services.search.index_entry(created)

        return created.id

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        config = self.core.config
        return min(config.retry_base_delay * 2 ** (attempt - 1), config.retry_max_delay)

    async def drain(self) -> None:
        """Wait until the queue is empty and no retry is pending."""
        while True:
            await self.queue.join()
            pending = [timer for timer in self._retry_timers if not timer.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    def get_stats(self) -> WorkerStats:
        config = self.core.config
        return WorkerStats(
            queued=self.queue.qsize(),
            waiting_retry=len(self._retry_timers),
            in_flight=len(self._in_flight),
            backlog_limit=config.worker_backlog_limit,
            concurrency=config.worker_concurrency,
        )

    def get_in_flight_numbers(self, parent_id: UUID, kind: ChildKind) -> list[int]:
        """Numbers allocated for a parent whose tasks are queued, running or waiting to retry."""
        return sorted(t.number for t in self._in_flight.values() if t.parent_id == parent_id and t.kind == kind)

    async def list_dead_tasks(
        self, parent_id: UUID | None = None, kind: ChildKind | None = None, limit: int = 100
    ) -> list[DeadTask]:
        query: dict[str, Any] = {}
        if parent_id is not None:
            query["parent_id"] = parent_id
        if kind is not None:
            query["kind"] = kind
        cursor = self._dead.find(query).sort("dead_at", -1).limit(limit)
        return await DeadTask.list_cursor(cursor)

    async def count_dead_tasks(self) -> int:
        return await self._dead.count_documents({})

    async def requeue_dead_task(self, task_id: UUID) -> CreationTask:
        """Give a dead task a fresh attempt budget. Operator action."""
        doc = await self._dead.find_one({"_id": task_id})
        if not doc:
            raise NotFoundError(f"Dead task not found: {task_id}")
        self.ensure_capacity()
        task = DeadTask.model_validate(doc).to_task()
        await self._dead.delete_one({"_id": task_id})
        await self.submit(task)
        logger.info("task_requeued", task_id=task.id, kind=task.kind, parent_id=task.parent_id, number=task.number)
        return task

    async def delete_dead_tasks(self, parent_ids: list[UUID]) -> int:
        result = await self._dead.delete_many({"parent_id": {"$in": parent_ids}})
        return result.deleted_count

    async def _consume(self, worker_id: int) -> None:
        while True:
            task = await self.queue.get()
            try:
                await self._run(task)
            except Exception:
                logger.exception("worker_task_crashed", worker_id=worker_id, task_id=task.id)
            finally:
                self.queue.task_done()

    async def _run(self, task: CreationTask) -> None:
        task.attempt += 1
        task.state = TaskState.RUNNING
        log = logger.bind(task_id=task.id, kind=task.kind, parent_id=task.parent_id, number=task.number, attempt=task.attempt)
        try:
            await asyncio.wait_for(
                self.execute(task.kind, task.parent_id, task.number, task.payload),
                self.core.config.task_timeout_seconds,
            )
        except Exception as e:
            if isinstance(e, DuplicateNumberError) and task.timed_out:
                # Only this task owns the number, so the row is the one the timed-out attempt wrote
                await self._settle_landed(task, log)
                return
            if isinstance(e, TimeoutError):
                task.timed_out = True
            task.last_error = f"{type(e).__name__}: {e}"
            if task.attempt >= self.core.config.max_attempts:
                await self._dead_letter(task)
                return
            task.state = TaskState.RETRYING
            delay = self.backoff_delay(task.attempt)
            log.warning("task_retrying", error=task.last_error, delay=delay)
            timer = asyncio.create_task(self._retry_later(task, delay))
            self._retry_timers.add(timer)
            timer.add_done_callback(self._retry_timers.discard)
            return

        task.state = TaskState.SUCCEEDED
        self._in_flight.pop(task.id, None)
        log.debug("task_succeeded")

    async def _settle_landed(self, task: CreationTask, log: Any) -> None:
        """Finish a task whose timed-out attempt stored the row after all.

        The cached count is left to the reconciliation sweep; the entry is
        re-indexed because the cancelled attempt may not have reached it.
        """
        if task.kind is ChildKind.ENTRY:
            try:
                entry = await self.core.services.entry.get_entry_by_number(task.parent_id, task.number)
            except (PyMongoError, NotFoundError) as e:
                log.warning("landed_entry_not_indexed", error=str(e))
            else:
                await self.core.services.search.index_entry(entry)
        task.state = TaskState.SUCCEEDED
        self._in_flight.pop(task.id, None)
        log.info("task_landed_after_timeout")

    async def _retry_later(self, task: CreationTask, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.queue.put(task)

    async def _dead_letter(self, task: CreationTask) -> bool:
        """Record a dead task. Returns False if the record could not be written.

        A task stays in flight until its record exists, so an unrecorded one is
        still reported by the gap report and retried on shutdown.
        """
        task.state = TaskState.DEAD
        try:
            await self._dead.replace_one({"_id": task.id}, DeadTask.from_task(task).to_mongo(), upsert=True)
        except PyMongoError as e:
            logger.error(
                "task_dead_unrecorded",
                task_id=task.id,
                kind=task.kind,
                parent_id=task.parent_id,
                number=task.number,
                attempts=task.attempt,
                error=task.last_error,
                store_error=str(e),
            )
            return False
        self._in_flight.pop(task.id, None)
        logger.error(
            "task_dead",
            task_id=task.id,
            kind=task.kind,
            parent_id=task.parent_id,
            number=task.number,
            attempts=task.attempt,
            error=task.last_error,
        )
        return True
