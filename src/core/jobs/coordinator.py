"""JobCoordinator — at most one RUNNING instance per job id.

The IDLE/DONE/ERROR → RUNNING transition is a single conditional upsert; the
database decides the winner. Job bodies run fire-and-forget on the event
loop and are never cancelled; their task handles are kept until they finish.
A RUNNING row found at startup belongs to a dead process and is closed out
as ERROR by recover().
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.db.models import JobState, JobStatus
from src.core.db.session import session_factory, upsert
from src.core.errors import JobAlreadyRunning

logger = structlog.get_logger()

JobBody = Callable[[], Awaitable[object]]

INTERRUPTED = "interrupted"
FINISH_ATTEMPTS = 3


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobCoordinator:

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Callable[[], datetime] = _utc_now,
        finish_retry_delay: float = 0.5,
    ):
        self._engine = engine
        self._sessions = session_factory(engine)
        self._clock = clock
        self._finish_retry_delay = finish_retry_delay
        self._tasks: set[asyncio.Task] = set()

    async def recover(self) -> int:
        """Close out RUNNING rows left behind by a previous process. Returns rows touched."""
        stmt = (
            update(JobState)
            .where(JobState.status == JobStatus.RUNNING)
            .values(status=JobStatus.ERROR, finished_at=self._clock(), error=INTERRUPTED)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount:
            logger.warning("job.recovered", count=result.rowcount, error=INTERRUPTED)
        return result.rowcount

    async def try_start(self, job_id: str) -> bool:
        """Atomically claim job_id. True iff this caller moved it to RUNNING."""
        now = self._clock()
        table = JobState.__table__
        stmt = upsert(self._engine, table).values(
            id=job_id, status=JobStatus.RUNNING, started_at=now, finished_at=None, error=None
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "status": JobStatus.RUNNING,
                "started_at": now,
                "finished_at": None,
                "error": None,
            },
            where=table.c.status != JobStatus.RUNNING,
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        granted = result.rowcount == 1
        if granted:
            logger.info("job.started", job_id=job_id)
        else:
            logger.info("job.refused", job_id=job_id, reason="already running")
        return granted

    async def finish(self, job_id: str, error: str | None = None) -> None:
        stmt = (
            update(JobState)
            .where(JobState.id == job_id, JobState.status == JobStatus.RUNNING)
            .values(
                status=JobStatus.ERROR if error else JobStatus.DONE,
                finished_at=self._clock(),
                error=error,
            )
        )
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()

    async def get_state(self, job_id: str) -> JobState | None:
        async with self._sessions() as session:
            return await session.get(JobState, job_id)

    async def launch(self, job_id: str, body: JobBody) -> asyncio.Task:
        """Claim job_id, then run body in the background. Raises JobAlreadyRunning."""
        if not await self.try_start(job_id):
            raise JobAlreadyRunning(job_id)
        task = asyncio.create_task(self._run(job_id, body), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job_id: str, body: JobBody) -> None:
        try:
            await body()
        except Exception as e:
            logger.error("job.failed", job_id=job_id, error=str(e), exc_info=True)
            await self._record_finish(job_id, error=str(e) or type(e).__name__)
        else:
            logger.info("job.done", job_id=job_id)
            await self._record_finish(job_id)

    async def _record_finish(self, job_id: str, error: str | None = None) -> None:
        # a row still RUNNING after the last attempt is closed out by recover()
        for attempt in range(1, FINISH_ATTEMPTS + 1):
            try:
                await self.finish(job_id, error)
                return
            except SQLAlchemyError as e:
                logger.warning("job.finish_failed", job_id=job_id, attempt=attempt, error=str(e))
                if attempt < FINISH_ATTEMPTS:
                    await asyncio.sleep(self._finish_retry_delay)
        logger.error("job.finish_abandoned", job_id=job_id, attempts=FINISH_ATTEMPTS)

    async def drain(self) -> None:
        """Await in-flight job bodies (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
