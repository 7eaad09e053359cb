"""
Global invoice counter backed by a single database row.

`read` is a plain snapshot. `commit_increment` and `reserve_next` both run one
`UPDATE ... RETURNING` statement, so each increment is atomic on its own; the
snapshot-then-increment sequence built on top of them is not.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models

logger = logging.getLogger(__name__)

COUNTER_ID = 1


@dataclass(frozen=True)
class CounterSnapshot:
    sequence_value: int
    format_template: Optional[str] = None
    from_mail: Optional[str] = None


class GlobalCounterStore:
    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def _ensure_row(self, db: AsyncSession) -> models.GlobalCounter:
        result = await db.execute(
            select(models.GlobalCounter).filter(models.GlobalCounter.id == COUNTER_ID)
        )
        counter = result.scalars().first()
        if counter:
            return counter

        counter = models.GlobalCounter(id=COUNTER_ID, sequence_value=0)
        db.add(counter)
        try:
            await db.commit()
        except IntegrityError:
            # Another request created the row first
            await db.rollback()
            result = await db.execute(
                select(models.GlobalCounter).filter(models.GlobalCounter.id == COUNTER_ID)
            )
            return result.scalars().one()
        await db.refresh(counter)
        logger.info("Initialized global invoice counter")
        return counter

    @staticmethod
    def _snapshot(counter: models.GlobalCounter) -> CounterSnapshot:
        return CounterSnapshot(
            sequence_value=counter.sequence_value,
            format_template=counter.format_template,
            from_mail=counter.from_mail,
        )

    async def read(self) -> CounterSnapshot:
        """Current counter state, valid only at the instant of the call"""
        async with self._session_factory() as db:
            counter = await self._ensure_row(db)
            return self._snapshot(counter)

    async def _atomic_increment(self) -> CounterSnapshot:
        statement = (
            update(models.GlobalCounter)
            .where(models.GlobalCounter.id == COUNTER_ID)
            .values(
                sequence_value=models.GlobalCounter.sequence_value + 1,
                updated_at=datetime.datetime.now(datetime.UTC),
            )
            .returning(
                models.GlobalCounter.sequence_value,
                models.GlobalCounter.format_template,
                models.GlobalCounter.from_mail,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            row = (await db.execute(statement)).first()
            if row is None:
                await db.rollback()
                await self._ensure_row(db)
                row = (await db.execute(statement)).first()
            await db.commit()
            return CounterSnapshot(
                sequence_value=row.sequence_value,
                format_template=row.format_template,
                from_mail=row.from_mail,
            )

    async def commit_increment(self) -> int:
        """Add one to the stored sequence value and return the new value"""
        snapshot = await self._atomic_increment()
        return snapshot.sequence_value

    async def reserve_next(self) -> CounterSnapshot:
        """
        Reserve the next sequence value in one atomic step.

        The returned snapshot carries the reserved value and the template seen by
        the same statement, so formatting needs no separate read.
        """
        return await self._atomic_increment()

    async def update_settings(
        self,
        sequence_value: Optional[int] = None,
        format_template: Optional[str] = None,
        from_mail: Optional[str] = None,
    ) -> CounterSnapshot:
        async with self._session_factory() as db:
            counter = await self._ensure_row(db)
            if sequence_value is not None:
                counter.sequence_value = sequence_value
            if format_template is not None:
                counter.format_template = format_template.strip()
            if from_mail is not None:
                counter.from_mail = from_mail.strip()
            snapshot = self._snapshot(counter)
            await db.commit()
            logger.info(
                "Global counter settings updated: sequence_value=%s template=%r",
                snapshot.sequence_value,
                snapshot.format_template,
            )
            return snapshot
