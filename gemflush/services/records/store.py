from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gemflush.db.models import Business, CrawlJob, CrawlJobStatus, LlmFingerprint
from gemflush.db.models import Team as TeamRow
from gemflush.db.models import WikidataEntity
from gemflush.db.session import get_session_factory
from gemflush.logging_utils import structured_log
from gemflush.services.automation.errors import RecordNotFoundError
from gemflush.services.automation.types import (
    AnalysisResult,
    PublicationRecord,
    Record,
    RecordStatus,
    Team,
)

logger = logging.getLogger(__name__)

CRAWL_JOB_TYPE = "crawl"

# Record field -> businesses column.
_COLUMN_FOR_FIELD = {
    "name": "name",
    "url": "url",
    "status": "status",
    "location": "location",
    "automation_enabled": "automation_enabled",
    "next_run_at": "next_crawl_at",
    "last_crawled_at": "last_crawled_at",
    "last_published_at": "wikidata_published_at",
    "last_auto_published_at": "last_auto_published_at",
    "crawl_payload": "crawl_data",
    "external_entity_id": "wikidata_qid",
    "error_message": "error_message",
}


def record_from_row(row: Business) -> Record:
    return Record(
        id=int(row.id),
        team_id=int(row.team_id),
        name=row.name,
        url=row.url,
        status=RecordStatus(row.status),
        location=row.location,
        automation_enabled=bool(row.automation_enabled),
        next_run_at=row.next_crawl_at,
        last_crawled_at=row.last_crawled_at,
        last_published_at=row.wikidata_published_at,
        last_auto_published_at=row.last_auto_published_at,
        crawl_payload=row.crawl_data,
        external_entity_id=row.wikidata_qid,
        error_message=row.error_message,
    )


def team_from_row(row: TeamRow) -> Team:
    return Team(id=int(row.id), plan_tier=row.plan_name)


def _column_values(changes: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_name, value in changes.items():
        column = _COLUMN_FOR_FIELD.get(field_name)
        if column is None:
            raise ValueError(f"Unsupported record field: {field_name}")
        if isinstance(value, RecordStatus):
            value = value.value
        values[column] = value
    return values


class SqlRecordStore:
    """Record store over the businesses tables; each call is its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def get_by_id(self, record_id: int) -> Record | None:
        async with self._sessions()() as session:
            row = await session.get(Business, record_id)
            return record_from_row(row) if row is not None else None

    async def get_team_for(self, record_id: int) -> Team | None:
        async with self._sessions()() as session:
            result = await session.execute(
                select(TeamRow)
                .join(Business, Business.team_id == TeamRow.id)
                .where(Business.id == record_id)
            )
            row = result.scalar_one_or_none()
            return team_from_row(row) if row is not None else None

    async def update(self, record_id: int, changes: dict[str, Any]) -> None:
        if not changes:
            return
        values = _column_values(changes)
        async with self._sessions()() as session:
            row = await session.get(Business, record_id)
            if row is None:
                raise RecordNotFoundError(record_id)
            for column, value in values.items():
                setattr(row, column, value)
            await session.commit()

    async def create_publication_record(self, data: PublicationRecord) -> None:
        now = datetime.now(timezone.utc)
        async with self._sessions()() as session:
            result = await session.execute(
                select(WikidataEntity).where(WikidataEntity.qid == data.external_entity_id)
            )
            entity = result.scalar_one_or_none()
            if entity is None:
                entity = WikidataEntity(
                    business_id=data.record_id,
                    qid=data.external_entity_id,
                    entity_data=data.entity_snapshot,
                    published_to=data.target,
                    version=1,
                    enrichment_level=data.enrichment_level,
                    published_at=now,
                )
                session.add(entity)
            else:
                entity.entity_data = data.entity_snapshot
                entity.published_to = data.target
                entity.version = int(entity.version) + 1
                entity.enrichment_level = data.enrichment_level
                entity.last_enriched_at = now
            await session.commit()
            structured_log(
                logger,
                "info",
                "records.publication_recorded",
                record_id=data.record_id,
                external_entity_id=data.external_entity_id,
                version=entity.version,
            )

    async def create_fingerprint(self, record_id: int, analysis: AnalysisResult) -> None:
        async with self._sessions()() as session:
            session.add(
                LlmFingerprint(
                    business_id=record_id,
                    visibility_score=int(round(analysis.visibility_score)),
                    mention_rate=analysis.mention_rate,
                    sentiment_score=analysis.sentiment_score,
                    accuracy_score=analysis.accuracy_score,
                    avg_rank_position=analysis.avg_rank_position,
                    llm_results=list(analysis.llm_results),
                    competitive_leaderboard=analysis.competitive_leaderboard,
                )
            )
            await session.commit()

    async def latest_fingerprint(self, record_id: int) -> LlmFingerprint | None:
        async with self._sessions()() as session:
            result = await session.execute(
                select(LlmFingerprint)
                .where(LlmFingerprint.business_id == record_id)
                .order_by(LlmFingerprint.created_at.desc(), LlmFingerprint.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create_crawl_job(self, record_id: int) -> int:
        async with self._sessions()() as session:
            job = CrawlJob(
                business_id=record_id,
                job_type=CRAWL_JOB_TYPE,
                status=CrawlJobStatus.RUNNING,
            )
            session.add(job)
            await session.commit()
            return int(job.id)

    async def finish_crawl_job(
        self,
        job_id: int,
        *,
        succeeded: bool,
        error_message: str | None,
        attempts: int,
    ) -> None:
        async with self._sessions()() as session:
            job = await session.get(CrawlJob, job_id)
            if job is None:
                structured_log(logger, "warning", "records.crawl_job_missing", crawl_job_id=job_id)
                return
            job.status = CrawlJobStatus.COMPLETED if succeeded else CrawlJobStatus.FAILED
            job.error_message = error_message
            job.attempt_count = int(attempts)
            job.completed_at = datetime.now(timezone.utc)
            await session.commit()

    async def list_due(
        self,
        now: datetime,
        *,
        stale_before: datetime | None,
    ) -> list[tuple[Record, Team]]:
        due_condition = Business.next_crawl_at <= now
        if stale_before is not None:
            due_condition = or_(
                due_condition,
                Business.last_crawled_at < stale_before,
                Business.last_crawled_at.is_(None),
            )
        async with self._sessions()() as session:
            result = await session.execute(
                select(Business, TeamRow)
                .join(TeamRow, TeamRow.id == Business.team_id)
                .where(and_(Business.automation_enabled.is_(True), due_condition))
                .order_by(Business.id.asc())
            )
            rows = result.all()
        return [(record_from_row(business), team_from_row(team)) for business, team in rows]
