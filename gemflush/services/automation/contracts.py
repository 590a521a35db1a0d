"""Collaborator interfaces consumed by the automation pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from gemflush.services.automation.types import (
    AnalysisResult,
    CrawlResponse,
    FallbackMeta,
    PublicationRecord,
    PublishDTO,
    PublishOptions,
    PublishOutcome,
    Record,
    Team,
)


class RecordStore(Protocol):
    async def get_by_id(self, record_id: int) -> Record | None: ...

    async def get_team_for(self, record_id: int) -> Team | None: ...

    async def update(self, record_id: int, changes: dict[str, Any]) -> None:
        """Apply a partial update; keys are Record field names."""
        ...

    async def create_publication_record(self, data: PublicationRecord) -> None: ...

    async def create_fingerprint(self, record_id: int, analysis: AnalysisResult) -> None: ...

    async def create_crawl_job(self, record_id: int) -> int: ...

    async def finish_crawl_job(
        self,
        job_id: int,
        *,
        succeeded: bool,
        error_message: str | None,
        attempts: int,
    ) -> None: ...

    async def list_due(
        self,
        now: datetime,
        *,
        stale_before: datetime | None,
    ) -> list[tuple[Record, Team]]: ...


class Crawler(Protocol):
    async def crawl(self, url: str) -> CrawlResponse: ...


class CrawlPayloadValidator(Protocol):
    def validate(self, payload: dict[str, Any]) -> dict[str, Any]: ...


class FingerprintAnalyzer(Protocol):
    async def analyze(self, record: Record) -> AnalysisResult: ...


class PublishAssembler(Protocol):
    async def assemble(self, record_id: int) -> PublishDTO: ...


class Publisher(Protocol):
    async def create(
        self,
        record: Record,
        payload: dict[str, Any],
        options: PublishOptions,
    ) -> PublishOutcome: ...

    async def update(
        self,
        external_entity_id: str,
        record: Record,
        payload: dict[str, Any],
        options: PublishOptions,
    ) -> PublishOutcome: ...


class ManualFallbackStore(Protocol):
    async def store(
        self,
        record_id: int,
        entity_snapshot: dict[str, Any],
        meta: FallbackMeta,
    ) -> None: ...
