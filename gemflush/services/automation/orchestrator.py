from __future__ import annotations

import asyncio
import logging
import time
import uuid

from gemflush.logging_context import get_run_id, set_run_id
from gemflush.logging_utils import log_status_change, structured_log
from gemflush.services.automation import policy
from gemflush.services.automation.contracts import RecordStore
from gemflush.services.automation.crawl import CrawlExecutor
from gemflush.services.automation.errors import RecordNotFoundError, TeamNotFoundError
from gemflush.services.automation.fingerprint import FingerprintExecutor
from gemflush.services.automation.messages import user_safe_error_message
from gemflush.services.automation.publish import PublishDecision
from gemflush.services.automation.types import (
    AutomationPolicyConfig,
    Cadence,
    CFPRunResult,
    CrawlOutcome,
    FingerprintOutcome,
    PublishDisposition,
    RecordStatus,
)

logger = logging.getLogger(__name__)

_RESET_TO_CRAWLING = {RecordStatus.PENDING, RecordStatus.ERROR}


class CFPOrchestrator:
    """One crawl, fingerprint and publish run for a single record.

    Callers must not run two orchestrations for the same record id at the
    same time; the record store is the only shared state and holds no lock.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        crawl: CrawlExecutor,
        fingerprint: FingerprintExecutor,
        publish: PublishDecision,
    ) -> None:
        self._store = store
        self._crawl = crawl
        self._fingerprint = fingerprint
        self._publish = publish

    @property
    def store(self) -> RecordStore:
        return self._store

    async def run(
        self,
        record_id: int,
        *,
        auto_publish: bool | None = None,
        schedule_next: bool = False,
    ) -> CFPRunResult:
        previous_run_id = get_run_id()
        set_run_id(uuid.uuid4().hex[:12])
        try:
            return await self._run(
                record_id,
                auto_publish=auto_publish,
                schedule_next=schedule_next,
            )
        finally:
            set_run_id(previous_run_id)

    async def _run(
        self,
        record_id: int,
        *,
        auto_publish: bool | None,
        schedule_next: bool,
    ) -> CFPRunResult:
        started = time.monotonic()
        record = await self._store.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        team = await self._store.get_team_for(record_id)
        if team is None:
            raise TeamNotFoundError(record_id)
        config = policy.config_for(team.plan_tier)

        structured_log(
            logger,
            "info",
            "automation.run_started",
            record_id=record_id,
            team_id=team.id,
            plan_tier=policy.normalize_tier(team.plan_tier),
            status=record.status,
            auto_publish=auto_publish,
            schedule_next=schedule_next,
        )

        if record.status in _RESET_TO_CRAWLING:
            await self._store.update(
                record_id,
                {"status": RecordStatus.CRAWLING, "error_message": None},
            )
            log_status_change(
                logger,
                record_id=record_id,
                from_status=record.status,
                to_status=RecordStatus.CRAWLING,
                stage="run",
            )

        crawl_result, fingerprint_result = await asyncio.gather(
            self._crawl.run(record_id),
            self._fingerprint.run(record_id, update_status=False),
            return_exceptions=True,
        )
        crawl = _crawl_outcome(record_id, crawl_result)
        fingerprint = _fingerprint_outcome(record_id, fingerprint_result)

        if crawl.ok and not fingerprint.ok:
            structured_log(
                logger,
                "info",
                "automation.fingerprint_retry",
                record_id=record_id,
                error=fingerprint.error,
            )
            fingerprint = await self._fingerprint.run(record_id, update_status=True)

        await self._reconcile_status(record_id, crawl=crawl, fingerprint=fingerprint)

        error = crawl.error
        publish_ok = False
        if crawl.ok and _publish_allowed(config, auto_publish):
            try:
                disposition = await self._publish.run(
                    record_id,
                    force=auto_publish is True,
                )
                publish_ok = disposition == PublishDisposition.PUBLISHED
            except Exception as exc:
                error = error or user_safe_error_message(exc)
                logger.warning(
                    "automation.run_publish_failed",
                    extra={
                        "event": "automation.run_publish_failed",
                        "record_id": record_id,
                        "error": user_safe_error_message(exc),
                    },
                    exc_info=True,
                )

        if schedule_next:
            await self._schedule_next(record_id, config)

        result = CFPRunResult(
            record_id=record_id,
            crawl_ok=crawl.ok,
            fingerprint_ok=fingerprint.ok,
            publish_ok=publish_ok,
            error=error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        structured_log(
            logger,
            "info" if result.success else "warning",
            "automation.run_completed",
            record_id=record_id,
            crawl_ok=result.crawl_ok,
            fingerprint_ok=result.fingerprint_ok,
            publish_ok=result.publish_ok,
            duration_ms=result.duration_ms,
            error=result.error,
        )
        return result

    async def _reconcile_status(
        self,
        record_id: int,
        *,
        crawl: CrawlOutcome,
        fingerprint: FingerprintOutcome,
    ) -> None:
        # Partial success keeps whatever the executors recorded.
        if crawl.ok != fingerprint.ok:
            return
        current = await self._store.get_by_id(record_id)
        if current is None:
            return
        if crawl.ok:
            target = RecordStatus.CRAWLED
            if current.status == target:
                return
            await self._store.update(record_id, {"status": target})
        else:
            target = RecordStatus.ERROR
            if current.status == target:
                return
            await self._store.update(
                record_id,
                {
                    "status": target,
                    "error_message": crawl.error or fingerprint.error,
                },
            )
        log_status_change(
            logger,
            record_id=record_id,
            from_status=current.status,
            to_status=target,
            stage="run",
        )

    async def _schedule_next(self, record_id: int, config: AutomationPolicyConfig) -> None:
        if config.crawl_cadence == Cadence.MANUAL:
            return
        next_run_at = policy.next_run_after(config.crawl_cadence)
        await self._store.update(record_id, {"next_run_at": next_run_at})
        structured_log(
            logger,
            "debug",
            "automation.next_run_scheduled",
            record_id=record_id,
            next_run_at=next_run_at.isoformat(),
        )


def _publish_allowed(config: AutomationPolicyConfig, auto_publish: bool | None) -> bool:
    if auto_publish is None:
        return config.auto_publish_enabled
    return auto_publish


def _crawl_outcome(record_id: int, result: CrawlOutcome | BaseException) -> CrawlOutcome:
    if isinstance(result, BaseException):
        logger.error(
            "automation.crawl_unexpected_error",
            extra={"event": "automation.crawl_unexpected_error", "record_id": record_id},
            exc_info=result,
        )
        return CrawlOutcome(ok=False, error=user_safe_error_message(result))
    return result


def _fingerprint_outcome(
    record_id: int,
    result: FingerprintOutcome | BaseException,
) -> FingerprintOutcome:
    if isinstance(result, BaseException):
        logger.error(
            "automation.fingerprint_unexpected_error",
            extra={"event": "automation.fingerprint_unexpected_error", "record_id": record_id},
            exc_info=result,
        )
        return FingerprintOutcome(ok=False, error=user_safe_error_message(result))
    return result
