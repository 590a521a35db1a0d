from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from gemflush.services.automation import policy
from gemflush.services.automation.types import Cadence, EnrichmentLevel, RecordStatus
from tests.unit.services.automation.fakes import make_record

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def test_config_for_maps_each_tier() -> None:
    free = policy.config_for("free")
    pro = policy.config_for("pro")
    agency = policy.config_for("agency")

    assert free.crawl_cadence == Cadence.MANUAL
    assert free.fingerprint_cadence == Cadence.MANUAL
    assert free.auto_publish_enabled is False
    assert free.enrichment_level == EnrichmentLevel.BASIC

    assert pro.crawl_cadence == Cadence.WEEKLY
    assert pro.auto_publish_enabled is True
    assert pro.enrichment_level == EnrichmentLevel.ENHANCED
    assert pro.progressive_enrichment is False

    assert agency.enrichment_level == EnrichmentLevel.COMPLETE
    assert agency.progressive_enrichment is True


@pytest.mark.parametrize("tier", [None, "", "enterprise", "  PRO-legacy "])
def test_config_for_unknown_tier_falls_back_to_free(tier) -> None:
    assert policy.config_for(tier) == policy.config_for("free")


def test_config_for_normalizes_case_and_whitespace() -> None:
    assert policy.config_for(" Agency ") == policy.config_for("agency")


def test_is_crawl_due_respects_cadence_flag_and_schedule() -> None:
    pro = policy.config_for("pro")

    assert policy.is_crawl_due(make_record(next_run_at=None), pro, now=NOW) is True
    assert policy.is_crawl_due(make_record(next_run_at=NOW - timedelta(minutes=1)), pro, now=NOW) is True
    assert policy.is_crawl_due(make_record(next_run_at=NOW + timedelta(days=1)), pro, now=NOW) is False
    assert policy.is_crawl_due(make_record(automation_enabled=False), pro, now=NOW) is False
    assert policy.is_crawl_due(make_record(next_run_at=None), policy.config_for("free"), now=NOW) is False


def test_is_publish_eligible_requires_auto_publish_and_resting_status() -> None:
    pro = policy.config_for("pro")

    assert policy.is_publish_eligible(make_record(status=RecordStatus.CRAWLED), pro) is True
    assert policy.is_publish_eligible(make_record(status=RecordStatus.CRAWLED), policy.config_for("free")) is False
    for status in (RecordStatus.PENDING, RecordStatus.CRAWLING, RecordStatus.GENERATING, RecordStatus.ERROR):
        assert policy.is_publish_eligible(make_record(status=status), pro) is False


def test_is_publish_eligible_for_published_record_needs_newer_crawl() -> None:
    pro = policy.config_for("pro")
    published_at = NOW - timedelta(days=3)

    stale = make_record(
        status=RecordStatus.PUBLISHED,
        last_published_at=published_at,
        last_crawled_at=published_at - timedelta(hours=1),
    )
    refreshed = make_record(
        status=RecordStatus.PUBLISHED,
        last_published_at=published_at,
        last_crawled_at=published_at + timedelta(hours=1),
    )
    never_published = make_record(status=RecordStatus.PUBLISHED, last_published_at=None)

    assert policy.is_publish_eligible(stale, pro) is False
    assert policy.is_publish_eligible(refreshed, pro) is True
    assert policy.is_publish_eligible(never_published, pro) is True


def test_next_run_after_uses_fixed_offsets() -> None:
    assert policy.next_run_after(Cadence.DAILY, now=NOW) == NOW + timedelta(days=1)
    assert policy.next_run_after(Cadence.WEEKLY, now=NOW) == NOW + timedelta(days=7)
    with pytest.raises(ValueError):
        policy.next_run_after(Cadence.MANUAL, now=NOW)
