"""Load test history for the engine and persist auto-complete outcomes.

ORM rows are converted to the engine's pydantic records here, so nothing
downstream touches a session.  A row that fails record validation (for
example ingested counters with more engagements than impressions) is logged
and skipped by the bulk loaders, so one bad test cannot hide the rest.
Completion writes are conditional on the row still being active: two
workers racing on the same test can both decide to complete it, but only
one UPDATE will match.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.ab_test import ABTest as ABTestRow
from app.stats.records import (
    ABTest,
    ABTestRecord,
    ABTestStatus,
    ABTestWithVariants,
    VariantMetrics,
)

logger = logging.getLogger(__name__)


def to_record(row: ABTestRow, model: type[ABTestRecord] = ABTestWithVariants) -> ABTestRecord:
    """Convert an ORM test (with variants loaded) into an engine record.

    Raises
    ------
    pydantic.ValidationError
        If the stored test or any of its variants is not a valid record.
    """
    return model(
        test=ABTest.model_validate(row),
        variants=[VariantMetrics.model_validate(v) for v in row.variants],
    )


def _comparable_records(rows) -> list[ABTestWithVariants]:
    records = []
    for row in rows:
        if len(row.variants) < 2:
            logger.debug("Skipping test %s with %d variant(s)", row.id, len(row.variants))
            continue
        try:
            records.append(to_record(row))
        except ValidationError as exc:
            logger.warning("Skipping test %s with invalid stored data: %s", row.id, exc)
    return records


async def load_test(db: AsyncSession, test_id: uuid.UUID) -> Optional[ABTestRecord]:
    """One test with all of its variants, however many there are.

    Raises ``pydantic.ValidationError`` if the stored data is invalid.
    """
    result = await db.execute(
        select(ABTestRow).where(ABTestRow.id == test_id).options(selectinload(ABTestRow.variants))
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None
    return to_record(row, ABTestRecord)


async def load_user_history(db: AsyncSession, user_id: uuid.UUID) -> list[ABTestWithVariants]:
    """All of a user's comparable tests, oldest first.

    Tests with fewer than two variants or invalid stored data are skipped.
    """
    result = await db.execute(
        select(ABTestRow)
        .where(ABTestRow.user_id == user_id)
        .options(selectinload(ABTestRow.variants))
        .order_by(ABTestRow.created_at)
    )
    return _comparable_records(result.scalars().all())


async def load_active_tests(db: AsyncSession) -> list[ABTestWithVariants]:
    result = await db.execute(
        select(ABTestRow)
        .where(ABTestRow.status == ABTestStatus.active)
        .options(selectinload(ABTestRow.variants))
    )
    return _comparable_records(result.scalars().all())


async def apply_completion(db: AsyncSession, completed: ABTest) -> bool:
    """Write a completed test back, only if the stored row is still active.

    Parameters
    ----------
    db : AsyncSession
        Database session.  The caller commits.
    completed : ABTest
        Record returned by ``auto_complete_test``.

    Returns
    -------
    bool
        True if this call performed the transition, False if another writer
        completed (or cancelled) the test first.
    """
    result = await db.execute(
        update(ABTestRow)
        .where(ABTestRow.id == completed.id, ABTestRow.status == ABTestStatus.active)
        .values(
            status=ABTestStatus.completed,
            winning_variant_id=completed.winning_variant_id,
            confidence_level=completed.confidence_level,
            completed_at=completed.completed_at,
        )
    )
    await db.flush()
    applied = result.rowcount == 1
    if not applied:
        logger.info("Test %s was no longer active; completion not applied", completed.id)
    return applied
