from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from enum import StrEnum
import logging
from typing import Callable

from gemflush.logging_utils import structured_log
from gemflush.services.automation import policy
from gemflush.services.automation.contracts import RecordStore
from gemflush.services.automation.orchestrator import CFPOrchestrator
from gemflush.services.automation.types import (
    Cadence,
    Record,
    SchedulerSummary,
    Team,
)
from gemflush.settings import settings

logger = logging.getLogger(__name__)


class _Outcome(StrEnum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class Scheduler:
    """Selects due records and runs them through the orchestrator in batches.

    Records inside a batch run concurrently; batches run one after another so
    at most ``batch_size`` runs hit the external services at once.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        orchestrator: CFPOrchestrator,
        stale_after_days: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._stale_after = timedelta(
            days=max(
                1,
                int(
                    settings.scheduler_stale_after_days
                    if stale_after_days is None
                    else stale_after_days
                ),
            )
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def process_due(
        self,
        *,
        batch_size: int | None = None,
        catch_missed: bool | None = None,
    ) -> SchedulerSummary:
        size = max(1, int(settings.scheduler_batch_size if batch_size is None else batch_size))
        include_missed = settings.scheduler_catch_missed if catch_missed is None else catch_missed
        now = self._clock()
        stale_before = now - self._stale_after if include_missed else None

        candidates = _unique_by_record(
            await self._store.list_due(now, stale_before=stale_before)
        )
        structured_log(
            logger,
            "info",
            "scheduler.due_records_loaded",
            count=len(candidates),
            batch_size=size,
            catch_missed=include_missed,
        )
        if not candidates:
            return SchedulerSummary()

        counts = {outcome: 0 for outcome in _Outcome}
        total_batches = (len(candidates) + size - 1) // size
        for index in range(0, len(candidates), size):
            batch = candidates[index:index + size]
            structured_log(
                logger,
                "info",
                "scheduler.batch_started",
                batch_number=index // size + 1,
                total_batches=total_batches,
                batch_records=len(batch),
            )
            results = await asyncio.gather(
                *(self._process_one(record, team, now=now) for record, team in batch),
                return_exceptions=True,
            )
            for (record, _), result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error(
                        "scheduler.record_failed",
                        extra={"event": "scheduler.record_failed", "record_id": record.id},
                        exc_info=result,
                    )
                    counts[_Outcome.FAILED] += 1
                    continue
                counts[result] += 1

        summary = SchedulerSummary(
            total=len(candidates),
            success=counts[_Outcome.SUCCESS],
            skipped=counts[_Outcome.SKIPPED],
            failed=counts[_Outcome.FAILED],
        )
        structured_log(
            logger,
            "info",
            "scheduler.pass_completed",
            total=summary.total,
            success=summary.success,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    async def _process_one(self, record: Record, team: Team, *, now: datetime) -> _Outcome:
        config = policy.config_for(team.plan_tier)
        if config.crawl_cadence == Cadence.MANUAL:
            structured_log(
                logger,
                "debug",
                "scheduler.record_skipped_manual",
                record_id=record.id,
                plan_tier=team.plan_tier,
            )
            return _Outcome.SKIPPED
        if not policy.is_crawl_due(record, config, now=now):
            structured_log(
                logger,
                "debug",
                "scheduler.record_skipped_not_due",
                record_id=record.id,
                automation_enabled=record.automation_enabled,
                next_run_at=record.next_run_at.isoformat() if record.next_run_at else None,
            )
            return _Outcome.SKIPPED

        result = await self._orchestrator.run(record.id, schedule_next=True)
        return _Outcome.SUCCESS if result.crawl_ok else _Outcome.FAILED


def _unique_by_record(rows: list[tuple[Record, Team]]) -> list[tuple[Record, Team]]:
    seen: set[int] = set()
    unique: list[tuple[Record, Team]] = []
    for record, team in rows:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append((record, team))
    return unique


class SchedulerService:
    def __init__(
        self,
        *,
        enabled: bool,
        tick_seconds: int,
        batch_size: int,
        catch_missed: bool,
        scheduler_provider: Callable[[], Scheduler],
    ) -> None:
        self._enabled = enabled
        self._tick_seconds = max(5, int(tick_seconds))
        self._batch_size = max(1, int(batch_size))
        self._catch_missed = bool(catch_missed)
        self._scheduler_provider = scheduler_provider
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if not self._enabled:
            logger.info(
                "scheduler.disabled",
                extra={
                    "event": "scheduler.disabled",
                },
            )
            return
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run_loop(), name="gemflush-scheduler")
        logger.info(
            "scheduler.started",
            extra={
                "event": "scheduler.started",
                "tick_seconds": self._tick_seconds,
                "batch_size": self._batch_size,
                "catch_missed": self._catch_missed,
            },
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("scheduler.stopped", extra={"event": "scheduler.stopped"})

    async def _run_loop(self) -> None:
        while True:
            try:
                await self._tick_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "scheduler.tick_failed",
                    extra={
                        "event": "scheduler.tick_failed",
                    },
                )
            await asyncio.sleep(float(self._tick_seconds))

    async def _tick_once(self) -> SchedulerSummary:
        return await self._scheduler_provider().process_due(
            batch_size=self._batch_size,
            catch_missed=self._catch_missed,
        )
