"""Tier-derived automation rules.

Every function here is pure: a plan tier maps to a fixed configuration, and
the due/eligibility predicates only read the record snapshot they are given.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from gemflush.services.automation.types import (
    AutomationPolicyConfig,
    Cadence,
    EnrichmentLevel,
    PlanTier,
    Record,
    RecordStatus,
)

_TIER_CONFIGS: dict[PlanTier, AutomationPolicyConfig] = {
    PlanTier.FREE: AutomationPolicyConfig(
        crawl_cadence=Cadence.MANUAL,
        fingerprint_cadence=Cadence.MANUAL,
        auto_publish_enabled=False,
        enrichment_level=EnrichmentLevel.BASIC,
    ),
    PlanTier.PRO: AutomationPolicyConfig(
        crawl_cadence=Cadence.WEEKLY,
        fingerprint_cadence=Cadence.WEEKLY,
        auto_publish_enabled=True,
        enrichment_level=EnrichmentLevel.ENHANCED,
    ),
    PlanTier.AGENCY: AutomationPolicyConfig(
        crawl_cadence=Cadence.WEEKLY,
        fingerprint_cadence=Cadence.WEEKLY,
        auto_publish_enabled=True,
        enrichment_level=EnrichmentLevel.COMPLETE,
        progressive_enrichment=True,
    ),
}

_CADENCE_OFFSETS = {
    Cadence.DAILY: timedelta(days=1),
    Cadence.WEEKLY: timedelta(days=7),
}

_PUBLISHABLE_STATUSES = {RecordStatus.CRAWLED, RecordStatus.PUBLISHED}


def normalize_tier(plan_tier: str | None) -> PlanTier:
    if not plan_tier:
        return PlanTier.FREE
    try:
        return PlanTier(plan_tier.strip().lower())
    except ValueError:
        return PlanTier.FREE


def config_for(plan_tier: str | None) -> AutomationPolicyConfig:
    """Return the automation config for a tier; unknown tiers get the free config."""
    return _TIER_CONFIGS[normalize_tier(plan_tier)]


def is_crawl_due(
    record: Record,
    config: AutomationPolicyConfig,
    *,
    now: datetime | None = None,
) -> bool:
    if config.crawl_cadence == Cadence.MANUAL:
        return False
    if not record.automation_enabled:
        return False
    if record.next_run_at is None:
        return True
    current = now or datetime.now(timezone.utc)
    return record.next_run_at <= current


def is_publish_eligible(record: Record, config: AutomationPolicyConfig) -> bool:
    if not config.auto_publish_enabled:
        return False
    return is_publishable_state(record)


def is_publishable_state(record: Record) -> bool:
    if record.status not in _PUBLISHABLE_STATUSES:
        return False
    if record.status == RecordStatus.PUBLISHED:
        if record.last_published_at is None:
            return True
        if record.last_crawled_at is None:
            return False
        return record.last_crawled_at > record.last_published_at
    return True


def next_run_after(cadence: Cadence, *, now: datetime | None = None) -> datetime:
    offset = _CADENCE_OFFSETS.get(Cadence(cadence))
    if offset is None:
        raise ValueError(f"Cadence {cadence!r} has no automatic schedule")
    return (now or datetime.now(timezone.utc)) + offset
