from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class RecordStatus(StrEnum):
    PENDING = "pending"
    CRAWLING = "crawling"
    CRAWLED = "crawled"
    GENERATING = "generating"
    PUBLISHED = "published"
    ERROR = "error"


class PlanTier(StrEnum):
    FREE = "free"
    PRO = "pro"
    AGENCY = "agency"


class Cadence(StrEnum):
    MANUAL = "manual"
    DAILY = "daily"
    WEEKLY = "weekly"


class EnrichmentLevel(StrEnum):
    BASIC = "basic"
    ENHANCED = "enhanced"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _ENRICHMENT_RANKS[self]


_ENRICHMENT_RANKS = {
    EnrichmentLevel.BASIC: 1,
    EnrichmentLevel.ENHANCED: 2,
    EnrichmentLevel.COMPLETE: 3,
}


class PublishDisposition(StrEnum):
    SKIPPED = "skipped"
    DECLINED = "declined"
    PUBLISHED = "published"


@dataclass(frozen=True)
class AutomationPolicyConfig:
    crawl_cadence: Cadence
    fingerprint_cadence: Cadence
    auto_publish_enabled: bool
    enrichment_level: EnrichmentLevel
    progressive_enrichment: bool = False


@dataclass(frozen=True)
class Team:
    id: int
    plan_tier: str | None


@dataclass(frozen=True)
class Record:
    """Snapshot of a business row as read from the record store."""

    id: int
    team_id: int
    name: str
    url: str
    status: RecordStatus = RecordStatus.PENDING
    location: dict[str, Any] | None = None
    automation_enabled: bool = False
    next_run_at: datetime | None = None
    last_crawled_at: datetime | None = None
    last_published_at: datetime | None = None
    last_auto_published_at: datetime | None = None
    crawl_payload: dict[str, Any] | None = None
    external_entity_id: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class CrawlResponse:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True)
class CrawlOutcome:
    ok: bool
    error: str | None = None
    attempts: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    visibility_score: float
    mention_rate: float | None = None
    sentiment_score: float | None = None
    accuracy_score: float | None = None
    avg_rank_position: float | None = None
    llm_results: list[Any] = field(default_factory=list)
    competitive_leaderboard: dict[str, Any] | None = None


@dataclass(frozen=True)
class FingerprintOutcome:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class Notability:
    is_notable: bool
    confidence: float = 0.0


@dataclass(frozen=True)
class PublishDTO:
    can_publish: bool
    notability: Notability
    full_entity: dict[str, Any]
    recommendation: str | None = None


@dataclass(frozen=True)
class PublishOptions:
    target: str
    include_references: bool = True
    enrichment_level: int = 1


@dataclass(frozen=True)
class PublishOutcome:
    success: bool
    external_entity_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PublicationRecord:
    record_id: int
    external_entity_id: str
    entity_snapshot: dict[str, Any]
    target: str
    enrichment_level: int


@dataclass(frozen=True)
class FallbackMeta:
    record_name: str
    can_publish: bool
    notability: Notability | None = None
    recommendation: str | None = None


@dataclass(frozen=True)
class CFPRunResult:
    record_id: int
    crawl_ok: bool
    fingerprint_ok: bool
    publish_ok: bool
    error: str | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.crawl_ok and self.fingerprint_ok


@dataclass(frozen=True)
class SchedulerSummary:
    total: int = 0
    success: int = 0
    skipped: int = 0
    failed: int = 0
