"""Periodic auto-completion sweep over active tests.

The scheduler has no timer of its own; whatever drives it (a cron job, a
FastAPI background task, a worker loop) calls ``run_once``.  Decisions are
made by the pure engine; each completed test is written in its own session
so one failing write does not roll back the others.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.stats.auto_complete import auto_complete_test
from app.stats.results_store import apply_completion, load_active_tests

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoCompleteScheduler:
    """Run the auto-complete policy against every active test.

    Parameters
    ----------
    session_factory : async_sessionmaker
        Produces the sessions used to read active tests and write outcomes.
    clock : callable | None
        Returns the current time; defaults to UTC now.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or _utcnow
        self.last_run_at: Optional[datetime] = None
        self.runs = 0
        self.completed_total = 0
        self.errors_total = 0

    async def run_once(self) -> dict:
        """One sweep.

        Returns
        -------
        dict
            checked: active tests evaluated
            completed: tests this sweep transitioned to completed
            lost_race: tests another writer completed first
            errors: tests whose evaluation or write failed
        """
        now = self._clock()
        async with self._session_factory() as db:
            active = await load_active_tests(db)

        summary = {"checked": len(active), "completed": 0, "lost_race": 0, "errors": 0}
        for record in active:
            test_id = record.test.id
            try:
                outcome = auto_complete_test(record.test, record.variants, now=now)
                if not outcome["changed"]:
                    logger.debug("Test %s not completed: %s", test_id, outcome["reason"])
                    continue
                async with self._session_factory() as db:
                    applied = await apply_completion(db, outcome["test"])
                    await db.commit()
            except Exception:
                logger.exception("Auto-complete failed for test %s", test_id)
                summary["errors"] += 1
                continue

            if applied:
                summary["completed"] += 1
                logger.info(
                    "Auto-completed test %s: winner %s at %.1f%% confidence",
                    test_id,
                    outcome["winner"],
                    outcome["confidence"],
                )
            else:
                summary["lost_race"] += 1

        self.last_run_at = now
        self.runs += 1
        self.completed_total += summary["completed"]
        self.errors_total += summary["errors"]
        logger.info(
            "Auto-complete sweep: %d checked, %d completed, %d errors",
            summary["checked"],
            summary["completed"],
            summary["errors"],
        )
        return summary
