from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gemflush.logging_utils import log_status_change, structured_log
from gemflush.services.automation import policy
from gemflush.services.automation.contracts import (
    CrawlPayloadValidator,
    Crawler,
    RecordStore,
)
from gemflush.services.automation.errors import (
    CrawlValidationError,
    RecordNotFoundError,
    TransientCrawlError,
)
from gemflush.services.automation.messages import user_safe_error_message
from gemflush.services.automation.types import (
    Cadence,
    CrawlOutcome,
    Record,
    RecordStatus,
)
from gemflush.settings import settings

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

PLACEHOLDER_NAMES = {"", "unknown", "unknown business"}
PLACEHOLDER_LOCATION_VALUES = {"", "unknown"}


def name_from_url(url: str) -> str:
    host = (urlparse(url).hostname or "").removeprefix("www.")
    main_part = host.split(".")[0] if host else ""
    if not main_part:
        return "Unknown Business"
    return main_part[:1].upper() + main_part[1:]


def is_placeholder_name(name: str | None, url: str) -> bool:
    normalized = (name or "").strip()
    if normalized.lower() in PLACEHOLDER_NAMES:
        return True
    return normalized == name_from_url(url)


def is_placeholder_location(location: dict[str, Any] | None) -> bool:
    if not location:
        return True
    city = str(location.get("city") or "").strip().lower()
    return city in PLACEHOLDER_LOCATION_VALUES


class CrawlExecutor:
    """Crawls a record's site with bounded retries and persists the payload.

    Only transient failures (the crawler raising, reporting failure, or
    returning an empty payload) are retried. A payload that fails validation
    ends the run immediately.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        crawler: Crawler,
        validator: CrawlPayloadValidator,
        max_attempts: int | None = None,
        base_delay_seconds: float | None = None,
        max_delay_seconds: float | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._crawler = crawler
        self._validator = validator
        self._max_attempts = max(
            1,
            int(settings.crawl_max_attempts if max_attempts is None else max_attempts),
        )
        self._base_delay_seconds = max(
            0.0,
            float(
                settings.crawl_retry_base_delay_seconds
                if base_delay_seconds is None
                else base_delay_seconds
            ),
        )
        self._max_delay_seconds = max(
            self._base_delay_seconds,
            float(
                settings.crawl_retry_max_delay_seconds
                if max_delay_seconds is None
                else max_delay_seconds
            ),
        )
        # Backoff delays must grow strictly up to the last retry.
        if self._max_attempts > 1 and self._base_delay_seconds > 0:
            longest_delay = self._base_delay_seconds * 2 ** (self._max_attempts - 2)
            if longest_delay > self._max_delay_seconds:
                raise ValueError(
                    f"Crawl retry delay cap {self._max_delay_seconds}s is below the "
                    f"{longest_delay}s backoff needed for {self._max_attempts} attempts"
                )
        self._sleep = sleep

    async def run(self, record_id: int) -> CrawlOutcome:
        record = await self._store.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        team = await self._store.get_team_for(record_id)
        config = policy.config_for(team.plan_tier if team is not None else None)

        if record.status != RecordStatus.CRAWLING:
            await self._store.update(record_id, {"status": RecordStatus.CRAWLING})
            log_status_change(
                logger,
                record_id=record_id,
                from_status=record.status,
                to_status=RecordStatus.CRAWLING,
                stage="crawl",
            )
        job_id = await self._store.create_crawl_job(record_id)

        attempts = 0

        async def _attempt() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return await self._crawl_once(record, attempt=attempts)

        try:
            payload = await self._retrying()(_attempt)
        except (TransientCrawlError, CrawlValidationError) as exc:
            return await self._fail(record, job_id=job_id, error=exc, attempts=attempts)

        now = datetime.now(timezone.utc)
        changes: dict[str, Any] = {
            "crawl_payload": payload,
            "last_crawled_at": now,
            "status": RecordStatus.CRAWLED,
            "error_message": None,
        }
        if record.automation_enabled and config.crawl_cadence != Cadence.MANUAL:
            changes["next_run_at"] = policy.next_run_after(config.crawl_cadence, now=now)
        await self._store.update(record_id, changes)
        await self._store.finish_crawl_job(
            job_id,
            succeeded=True,
            error_message=None,
            attempts=attempts,
        )
        log_status_change(
            logger,
            record_id=record_id,
            from_status=RecordStatus.CRAWLING,
            to_status=RecordStatus.CRAWLED,
            stage="crawl",
            attempts=attempts,
        )

        await self._backfill_identity(record, payload)
        return CrawlOutcome(ok=True, attempts=attempts)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=self._base_delay_seconds,
                max=self._max_delay_seconds,
            ),
            retry=retry_if_exception_type(TransientCrawlError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def _crawl_once(self, record: Record, *, attempt: int) -> dict[str, Any]:
        try:
            response = await self._crawler.crawl(record.url)
        except Exception as exc:
            raise TransientCrawlError(str(exc) or exc.__class__.__name__) from exc
        if not response.success:
            raise TransientCrawlError(response.error or "Crawl failed")
        if not response.data:
            raise TransientCrawlError("Crawl returned no data")
        validated = self._validator.validate(response.data)
        structured_log(
            logger,
            "debug",
            "automation.crawl_attempt_succeeded",
            record_id=record.id,
            attempt=attempt,
        )
        return validated

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        structured_log(
            logger,
            "warning",
            "automation.crawl_attempt_failed",
            attempt=retry_state.attempt_number,
            max_attempts=self._max_attempts,
            retry_in_seconds=delay,
            error=str(exc) if exc else None,
        )

    async def _fail(
        self,
        record: Record,
        *,
        job_id: int,
        error: Exception,
        attempts: int,
    ) -> CrawlOutcome:
        message = user_safe_error_message(error)
        await self._store.update(
            record.id,
            {"status": RecordStatus.ERROR, "error_message": message},
        )
        await self._store.finish_crawl_job(
            job_id,
            succeeded=False,
            error_message=message,
            attempts=attempts,
        )
        structured_log(
            logger,
            "warning",
            "automation.crawl_failed",
            record_id=record.id,
            attempts=attempts,
            validation_failed=isinstance(error, CrawlValidationError),
            error=message,
        )
        log_status_change(
            logger,
            record_id=record.id,
            from_status=RecordStatus.CRAWLING,
            to_status=RecordStatus.ERROR,
            stage="crawl",
        )
        return CrawlOutcome(ok=False, error=message, attempts=attempts)

    async def _backfill_identity(self, record: Record, payload: dict[str, Any]) -> None:
        changes: dict[str, Any] = {}
        crawled_name = str(payload.get("name") or "").strip()
        if crawled_name and is_placeholder_name(record.name, record.url):
            if crawled_name != record.name:
                changes["name"] = crawled_name
        crawled_location = payload.get("location")
        if (
            isinstance(crawled_location, dict)
            and crawled_location.get("city")
            and is_placeholder_location(record.location)
        ):
            location = {
                "city": crawled_location.get("city"),
                "state": crawled_location.get("state") or "Unknown",
                "country": crawled_location.get("country") or "US",
            }
            if crawled_location.get("lat") is not None and crawled_location.get("lng") is not None:
                location["coordinates"] = {
                    "lat": crawled_location["lat"],
                    "lng": crawled_location["lng"],
                }
            changes["location"] = location
        if not changes:
            return
        try:
            await self._store.update(record.id, changes)
        except Exception:
            logger.exception(
                "automation.crawl_backfill_failed",
                extra={
                    "event": "automation.crawl_backfill_failed",
                    "record_id": record.id,
                },
            )
            return
        structured_log(
            logger,
            "info",
            "automation.crawl_backfilled",
            record_id=record.id,
            fields=sorted(changes),
        )
