"""
Task Store: the per-seller idempotency and progress ledger.

Every mutation is a single conditional statement evaluated by the database
(INSERT ... ON CONFLICT ... DO UPDATE ... WHERE, UPDATE ... WHERE status = ...),
so the at-most-one-active-task guarantee holds across processes without any
in-process lock. A statement that matches no row raises TaskConflictError.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shared.db.database import Database
from shared.db.models import TaskRecord
from shared.schemas.dto import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Task,
    TaskStatus,
)
from shared.utils.errors import TaskConflictError
from shared.utils.helpers import utc_now
from shared.utils.logger import logger

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class TaskStore:
    """Conditional-write access to the sp_api_task table."""

    def __init__(self, database: Database):
        self.database = database

    def _insert(self):
        try:
            return _DIALECT_INSERTS[self.database.dialect_name](TaskRecord)
        except KeyError:
            raise NotImplementedError(
                f"Unsupported dialect for conditional upserts: {self.database.dialect_name}"
            )

    async def try_create_pending(
        self,
        seller_key: str,
        seller_id: str,
        stale_after: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> Task:
        """
        Create (or supersede) the seller's Task in PENDING.

        Succeeds when no row exists, when the existing row is terminal, or when
        an active row has not been touched for longer than stale_after. The
        previous last_cursor is carried over so the new attempt resumes where
        the last one checkpointed.

        Args:
            seller_key: Tenant part of the identity
            seller_id: Seller part of the identity
            stale_after: Age after which an active Task counts as abandoned;
                None never supersedes an active Task
            now: Reference time (defaults to the current time)

        Returns:
            The new PENDING Task

        Raises:
            TaskConflictError: An active Task already exists for the seller
        """
        await self.database.initialize()
        now = now or utc_now()
        supersedable = TaskRecord.status.in_(TERMINAL_STATUSES)
        if stale_after is not None:
            supersedable = or_(
                supersedable,
                and_(
                    TaskRecord.status.in_(ACTIVE_STATUSES),
                    TaskRecord.updated_at < now - stale_after,
                ),
            )

        stmt = self._insert().values(
            seller_key=seller_key,
            seller_id=seller_id,
            status=TaskStatus.PENDING.value,
            attempt=1,
            is_partial=False,
            records_ingested=0,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["seller_key", "seller_id"],
            set_={
                "status": TaskStatus.PENDING.value,
                "attempt": TaskRecord.attempt + 1,
                "is_partial": False,
                "records_ingested": 0,
                "last_error": None,
                "updated_at": now,
                "started_at": None,
                "finished_at": None,
            },
            where=supersedable,
        ).returning(*TaskRecord.__table__.columns)

        async with self.database.transaction() as conn:
            row = (await conn.execute(stmt)).first()

        if row is None:
            raise TaskConflictError(
                message=f"Active task already exists for {seller_key}/{seller_id}"
            )

        task = Task.from_row(row)
        logger.info(
            f"Created PENDING task for {seller_key}/{seller_id} (attempt {task.attempt})"
        )
        return task

    async def _conditional_update(
        self,
        seller_key: str,
        seller_id: str,
        expected_statuses: tuple,
        attempt: Optional[int],
        values: dict,
    ) -> Task:
        conditions = [
            TaskRecord.seller_key == seller_key,
            TaskRecord.seller_id == seller_id,
            TaskRecord.status.in_(expected_statuses),
        ]
        if attempt is not None:
            conditions.append(TaskRecord.attempt == attempt)

        stmt = (
            update(TaskRecord)
            .where(*conditions)
            .values(**values)
            .returning(*TaskRecord.__table__.columns)
        )

        async with self.database.transaction() as conn:
            row = (await conn.execute(stmt)).first()

        if row is None:
            raise TaskConflictError(
                message=(
                    f"Task {seller_key}/{seller_id} is not in "
                    f"{'/'.join(expected_statuses)} for attempt {attempt}"
                )
            )
        return Task.from_row(row)

    async def mark_running(
        self, seller_key: str, seller_id: str, attempt: Optional[int] = None
    ) -> Task:
        """
        Claim a PENDING Task for execution.

        Raises:
            TaskConflictError: The Task is not PENDING (already running, finished,
                or superseded by another attempt)
        """
        now = utc_now()
        return await self._conditional_update(
            seller_key,
            seller_id,
            (TaskStatus.PENDING.value,),
            attempt,
            {"status": TaskStatus.RUNNING.value, "started_at": now, "updated_at": now},
        )

    async def checkpoint(
        self,
        seller_key: str,
        seller_id: str,
        attempt: int,
        cursor: Optional[str],
        records: int,
    ) -> Task:
        """
        Persist the cursor after a batch has been stored and published.

        Raises:
            TaskConflictError: The run was fenced out by a newer attempt
        """
        return await self._conditional_update(
            seller_key,
            seller_id,
            (TaskStatus.RUNNING.value,),
            attempt,
            {
                "last_cursor": cursor,
                "records_ingested": TaskRecord.records_ingested + records,
                "updated_at": utc_now(),
            },
        )

    async def complete(
        self,
        seller_key: str,
        seller_id: str,
        attempt: int,
        cursor: Optional[str],
        is_partial: bool = False,
    ) -> Task:
        """
        Close a RUNNING Task as SUCCEEDED.

        Raises:
            TaskConflictError: The run was fenced out by a newer attempt
        """
        now = utc_now()
        return await self._conditional_update(
            seller_key,
            seller_id,
            (TaskStatus.RUNNING.value,),
            attempt,
            {
                "status": TaskStatus.SUCCEEDED.value,
                "last_cursor": cursor,
                "is_partial": is_partial,
                "updated_at": now,
                "finished_at": now,
            },
        )

    async def fail(
        self,
        seller_key: str,
        seller_id: str,
        attempt: Optional[int],
        error: str,
    ) -> Task:
        """
        Close an active Task as FAILED, keeping the cursor at the last checkpoint.

        Raises:
            TaskConflictError: The Task is no longer active for this attempt
        """
        now = utc_now()
        return await self._conditional_update(
            seller_key,
            seller_id,
            ACTIVE_STATUSES,
            attempt,
            {
                "status": TaskStatus.FAILED.value,
                "last_error": error,
                "updated_at": now,
                "finished_at": now,
            },
        )

    async def get(self, seller_key: str, seller_id: str) -> Optional[Task]:
        """Return the seller's Task, or None if it was never dispatched."""
        async with self.database.session() as session:
            record = await session.get(TaskRecord, (seller_key, seller_id))
            return Task.from_row(record) if record else None

    async def list_tasks(
        self, status: Optional[TaskStatus] = None, limit: int = 100
    ) -> List[Task]:
        """List Tasks, most recently updated first."""
        query = select(TaskRecord).order_by(TaskRecord.updated_at.desc()).limit(limit)
        if status is not None:
            query = query.where(TaskRecord.status == status.value)

        async with self.database.session() as session:
            result = await session.execute(query)
            return [Task.from_row(record) for record in result.scalars().all()]

    async def count(
        self, seller_key: Optional[str] = None, seller_id: Optional[str] = None
    ) -> int:
        query = select(func.count()).select_from(TaskRecord)
        if seller_key is not None:
            query = query.where(TaskRecord.seller_key == seller_key)
        if seller_id is not None:
            query = query.where(TaskRecord.seller_id == seller_id)

        async with self.database.session() as session:
            return (await session.execute(query)).scalar_one()
