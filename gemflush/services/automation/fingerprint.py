from __future__ import annotations

import logging

from gemflush.logging_utils import log_status_change, structured_log
from gemflush.services.automation.contracts import FingerprintAnalyzer, RecordStore
from gemflush.services.automation.messages import user_safe_error_message
from gemflush.services.automation.types import FingerprintOutcome, RecordStatus

logger = logging.getLogger(__name__)


class FingerprintExecutor:
    """Runs one visibility analysis for a record and appends it to history.

    Fingerprinting enhances a record but never blocks the pipeline: failures
    are logged, the pre-call status is restored, and nothing is raised.
    """

    def __init__(self, *, store: RecordStore, analyzer: FingerprintAnalyzer) -> None:
        self._store = store
        self._analyzer = analyzer

    async def run(self, record_id: int, *, update_status: bool = True) -> FingerprintOutcome:
        marked_generating = False
        previous_status: RecordStatus | None = None
        try:
            record = await self._store.get_by_id(record_id)
            if record is None:
                structured_log(
                    logger,
                    "warning",
                    "automation.fingerprint_skipped_missing_record",
                    record_id=record_id,
                )
                return FingerprintOutcome(ok=False, error="Business not found")

            previous_status = RecordStatus(record.status)
            if update_status and previous_status == RecordStatus.CRAWLED:
                await self._store.update(record_id, {"status": RecordStatus.GENERATING})
                marked_generating = True
                log_status_change(
                    logger,
                    record_id=record_id,
                    from_status=previous_status,
                    to_status=RecordStatus.GENERATING,
                    stage="fingerprint",
                )

            analysis = await self._analyzer.analyze(record)
            await self._store.create_fingerprint(record_id, analysis)
        except Exception as exc:
            message = user_safe_error_message(exc)
            logger.warning(
                "automation.fingerprint_failed",
                extra={
                    "event": "automation.fingerprint_failed",
                    "record_id": record_id,
                    "error": message,
                },
                exc_info=True,
            )
            if marked_generating and previous_status is not None:
                await self._restore_status(record_id, previous_status)
            return FingerprintOutcome(ok=False, error=message)

        if marked_generating:
            await self._restore_status(record_id, RecordStatus.CRAWLED)
        structured_log(
            logger,
            "info",
            "automation.fingerprint_completed",
            record_id=record_id,
            visibility_score=analysis.visibility_score,
        )
        return FingerprintOutcome(ok=True)

    async def _restore_status(self, record_id: int, status: RecordStatus) -> None:
        # A publish step may have advanced the record while analysis ran.
        try:
            current = await self._store.get_by_id(record_id)
            if current is None or current.status != RecordStatus.GENERATING:
                return
            await self._store.update(record_id, {"status": status})
        except Exception:
            logger.exception(
                "automation.fingerprint_status_restore_failed",
                extra={
                    "event": "automation.fingerprint_status_restore_failed",
                    "record_id": record_id,
                },
            )
            return
        log_status_change(
            logger,
            record_id=record_id,
            from_status=RecordStatus.GENERATING,
            to_status=status,
            stage="fingerprint",
        )
