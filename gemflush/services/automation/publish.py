from __future__ import annotations

from datetime import datetime, timezone
import logging
import time

from gemflush.logging_utils import log_status_change, structured_log
from gemflush.services.automation import policy
from gemflush.services.automation.contracts import (
    ManualFallbackStore,
    PublishAssembler,
    Publisher,
    RecordStore,
)
from gemflush.services.automation.errors import PublishFailedError, RecordNotFoundError
from gemflush.services.automation.messages import user_safe_error_message
from gemflush.services.automation.types import (
    AutomationPolicyConfig,
    FallbackMeta,
    PublicationRecord,
    PublishDisposition,
    PublishDTO,
    PublishOptions,
    PublishOutcome,
    Record,
    RecordStatus,
)
from gemflush.settings import settings

logger = logging.getLogger(__name__)


class PublishDecision:
    """Decides whether a crawled record is published and drives the publish.

    The assembled entity is always handed to the manual fallback store before
    anything else can decline or fail, so an operator can finish publication
    by hand. Records that already carry an external entity id are routed to
    the publisher's update path; create is only used for first publication.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        assembler: PublishAssembler,
        publisher: Publisher,
        fallback_store: ManualFallbackStore,
        target: str | None = None,
    ) -> None:
        self._store = store
        self._assembler = assembler
        self._publisher = publisher
        self._fallback_store = fallback_store
        self._target = target or settings.publish_target

    async def run(self, record_id: int, *, force: bool = False) -> PublishDisposition:
        record = await self._store.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        team = await self._store.get_team_for(record_id)
        config = policy.config_for(team.plan_tier if team is not None else None)

        eligible = (
            policy.is_publishable_state(record)
            if force
            else policy.is_publish_eligible(record, config)
        )
        if not eligible:
            structured_log(
                logger,
                "info",
                "automation.publish_skipped",
                record_id=record_id,
                status=record.status,
                plan_tier=team.plan_tier if team is not None else None,
                auto_publish_enabled=config.auto_publish_enabled,
                forced=force,
            )
            return PublishDisposition.SKIPPED

        try:
            return await self._publish(record, config)
        except Exception as exc:
            await self._mark_error_once(record_id, exc)
            raise

    async def _publish(
        self,
        record: Record,
        config: AutomationPolicyConfig,
    ) -> PublishDisposition:
        await self._store.update(record.id, {"status": RecordStatus.GENERATING})
        log_status_change(
            logger,
            record_id=record.id,
            from_status=record.status,
            to_status=RecordStatus.GENERATING,
            stage="publish",
        )

        dto = await self._assembler.assemble(record.id)
        structured_log(
            logger,
            "info",
            "automation.publish_assembled",
            record_id=record.id,
            can_publish=dto.can_publish,
            is_notable=dto.notability.is_notable,
            confidence=dto.notability.confidence,
        )
        await self._store_fallback(record, dto)

        if not dto.can_publish:
            await self._store.update(record.id, {"status": RecordStatus.CRAWLED})
            structured_log(
                logger,
                "info",
                "automation.publish_declined",
                record_id=record.id,
                reason=_decline_reason(dto),
                is_notable=dto.notability.is_notable,
                confidence=dto.notability.confidence,
            )
            log_status_change(
                logger,
                record_id=record.id,
                from_status=RecordStatus.GENERATING,
                to_status=RecordStatus.CRAWLED,
                stage="publish",
            )
            return PublishDisposition.DECLINED

        options = PublishOptions(
            target=self._target,
            enrichment_level=config.enrichment_level.rank,
        )
        started = time.monotonic()
        outcome = await self._dispatch(record, dto, options)
        duration_ms = int((time.monotonic() - started) * 1000)

        external_entity_id = outcome.external_entity_id
        if record.external_entity_id and not external_entity_id:
            external_entity_id = record.external_entity_id

        if not outcome.success or not external_entity_id:
            raw_error = outcome.error or "Publication failed - no entity id returned"
            message = user_safe_error_message(raw_error)
            await self._store.update(
                record.id,
                {"status": RecordStatus.ERROR, "error_message": message},
            )
            structured_log(
                logger,
                "warning",
                "automation.publish_failed",
                record_id=record.id,
                duration_ms=duration_ms,
                error=message,
            )
            log_status_change(
                logger,
                record_id=record.id,
                from_status=RecordStatus.GENERATING,
                to_status=RecordStatus.ERROR,
                stage="publish",
            )
            raise PublishFailedError(raw_error)

        # A newly assigned entity id is stored before any other write.
        if external_entity_id != record.external_entity_id:
            await self._store.update(record.id, {"external_entity_id": external_entity_id})
        await self._store.create_publication_record(
            PublicationRecord(
                record_id=record.id,
                external_entity_id=external_entity_id,
                entity_snapshot=dto.full_entity,
                target=options.target,
                enrichment_level=options.enrichment_level,
            )
        )
        now = datetime.now(timezone.utc)
        await self._store.update(
            record.id,
            {
                "status": RecordStatus.PUBLISHED,
                "external_entity_id": external_entity_id,
                "last_published_at": now,
                "last_auto_published_at": now,
                "error_message": None,
            },
        )
        structured_log(
            logger,
            "info",
            "automation.publish_completed",
            record_id=record.id,
            external_entity_id=external_entity_id,
            updated_existing=bool(record.external_entity_id),
            duration_ms=duration_ms,
        )
        log_status_change(
            logger,
            record_id=record.id,
            from_status=RecordStatus.GENERATING,
            to_status=RecordStatus.PUBLISHED,
            stage="publish",
            external_entity_id=external_entity_id,
        )
        return PublishDisposition.PUBLISHED

    async def _dispatch(
        self,
        record: Record,
        dto: PublishDTO,
        options: PublishOptions,
    ) -> PublishOutcome:
        # A record with an entity id is never created twice upstream.
        if record.external_entity_id:
            return await self._publisher.update(
                record.external_entity_id,
                record,
                dto.full_entity,
                options,
            )
        return await self._publisher.create(record, dto.full_entity, options)

    async def _store_fallback(self, record: Record, dto: PublishDTO) -> None:
        try:
            await self._fallback_store.store(
                record.id,
                dto.full_entity,
                FallbackMeta(
                    record_name=record.name,
                    can_publish=dto.can_publish,
                    notability=dto.notability,
                    recommendation=dto.recommendation,
                ),
            )
        except Exception:
            logger.exception(
                "automation.manual_fallback_store_failed",
                extra={
                    "event": "automation.manual_fallback_store_failed",
                    "record_id": record.id,
                },
            )

    async def _mark_error_once(self, record_id: int, error: BaseException) -> None:
        try:
            current = await self._store.get_by_id(record_id)
            if current is None or current.status == RecordStatus.ERROR:
                return
            await self._store.update(
                record_id,
                {
                    "status": RecordStatus.ERROR,
                    "error_message": user_safe_error_message(error),
                },
            )
        except Exception:
            logger.exception(
                "automation.publish_error_status_write_failed",
                extra={
                    "event": "automation.publish_error_status_write_failed",
                    "record_id": record_id,
                },
            )
            return
        log_status_change(
            logger,
            record_id=record_id,
            from_status=current.status,
            to_status=RecordStatus.ERROR,
            stage="publish",
        )


def _decline_reason(dto: PublishDTO) -> str:
    if dto.notability.is_notable:
        return f"Not notable (confidence: {dto.notability.confidence})"
    return dto.recommendation or "Notability requirements not met"
