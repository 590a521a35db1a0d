from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from gemflush.logging_context import get_run_id
from gemflush.services.automation.errors import RecordNotFoundError, TeamNotFoundError
from gemflush.services.automation.types import AnalysisResult, PublishOutcome, RecordStatus
from tests.unit.services.automation.fakes import (
    FakeAnalyzer,
    FakeAssembler,
    FakeCrawler,
    FakePublisher,
    InMemoryRecordStore,
    PassThroughValidator,
    build_pipeline,
    make_record,
)


@pytest.mark.asyncio
async def test_pro_record_without_entity_id_is_created_and_published() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.CRAWLED, external_entity_id=None), plan_tier="pro")
    pipeline = build_pipeline(store, assembler=FakeAssembler(is_notable=True, confidence=0.9))

    result = await pipeline.orchestrator.run(1)

    assert result.crawl_ok and result.fingerprint_ok and result.publish_ok
    assert result.success is True
    assert len(pipeline.publisher.create_calls) == 1
    assert pipeline.publisher.update_calls == []
    assert store.status_of(1) == RecordStatus.PUBLISHED
    assert store.records[1].external_entity_id == "Q4242"


@pytest.mark.asyncio
async def test_pro_record_with_entity_id_is_updated_not_created() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.CRAWLED, external_entity_id="X123"), plan_tier="pro")
    pipeline = build_pipeline(store, publisher=FakePublisher(PublishOutcome(success=True, external_entity_id="X123")))

    result = await pipeline.orchestrator.run(1)

    assert result.publish_ok is True
    assert pipeline.publisher.create_calls == []
    assert [call[0] for call in pipeline.publisher.update_calls] == ["X123"]
    assert store.records[1].external_entity_id == "X123"


@pytest.mark.asyncio
async def test_not_notable_record_ends_crawled_without_publisher_calls() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.CRAWLED), plan_tier="pro")
    pipeline = build_pipeline(store, assembler=FakeAssembler(can_publish=False, is_notable=False))

    result = await pipeline.orchestrator.run(1)

    assert result.success is True
    assert result.publish_ok is False
    assert result.error is None
    assert store.status_of(1) == RecordStatus.CRAWLED
    assert pipeline.publisher.create_calls == [] and pipeline.publisher.update_calls == []
    assert len(pipeline.fallback.calls) == 1


@pytest.mark.asyncio
async def test_crawl_failing_every_attempt_ends_in_error() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING), plan_tier="pro")
    pipeline = build_pipeline(
        store,
        crawler=FakeCrawler(RuntimeError("upstream 503")),
        analyzer=FakeAnalyzer(RuntimeError("analysis down")),
    )

    result = await pipeline.orchestrator.run(1)

    assert result.crawl_ok is False
    assert result.fingerprint_ok is False
    assert len(pipeline.crawler.calls) == 3
    assert pipeline.sleep.delays == [2.0, 4.0]
    assert store.status_of(1) == RecordStatus.ERROR
    assert store.records[1].error_message == "upstream 503"
    assert pipeline.assembler.calls == []


@pytest.mark.asyncio
async def test_crawl_ok_fingerprint_failed_retries_fingerprint_once() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING), plan_tier="free")
    analyzer = FakeAnalyzer(RuntimeError("rate limited"), RuntimeError("still rate limited"))
    pipeline = build_pipeline(store, analyzer=analyzer)

    result = await pipeline.orchestrator.run(1)

    assert result.crawl_ok is True
    assert result.fingerprint_ok is False
    assert len(analyzer.calls) == 2
    assert store.status_of(1) == RecordStatus.CRAWLED


@pytest.mark.asyncio
async def test_fingerprint_retry_can_recover() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING), plan_tier="free")
    analyzer = FakeAnalyzer(RuntimeError("cold start"), AnalysisResult(visibility_score=51.0))
    pipeline = build_pipeline(store, analyzer=analyzer)

    result = await pipeline.orchestrator.run(1)

    assert result.success is True
    assert len(analyzer.calls) == 2
    assert len(store.fingerprints) == 1
    assert store.status_of(1) == RecordStatus.CRAWLED


@pytest.mark.asyncio
async def test_crawl_failed_fingerprint_ok_does_not_retry_fingerprint() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING), plan_tier="pro")
    pipeline = build_pipeline(store, validator=PassThroughValidator(reject=True))

    result = await pipeline.orchestrator.run(1)

    assert result.crawl_ok is False
    assert result.fingerprint_ok is True
    assert len(pipeline.analyzer.calls) == 1
    assert pipeline.assembler.calls == []
    assert store.statuses_for(1) == [RecordStatus.CRAWLING, RecordStatus.ERROR]


@pytest.mark.asyncio
async def test_failed_crawl_with_successful_fingerprint_ends_in_error() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING), plan_tier="pro")
    pipeline = build_pipeline(store, crawler=FakeCrawler(RuntimeError("upstream 503")))

    result = await pipeline.orchestrator.run(1)

    assert result.crawl_ok is False
    assert result.fingerprint_ok is True
    assert result.success is False
    assert store.status_of(1) == RecordStatus.ERROR
    assert store.status_of(1) != RecordStatus.CRAWLING
    assert store.records[1].error_message == "upstream 503"
    assert store.statuses_for(1) == [RecordStatus.CRAWLING, RecordStatus.ERROR]
    assert len(store.fingerprints) == 1


@pytest.mark.asyncio
async def test_crawl_and_fingerprint_run_concurrently() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING), plan_tier="free")
    crawl_started = asyncio.Event()
    fingerprint_started = asyncio.Event()

    class _WaitingCrawler(FakeCrawler):
        async def crawl(self, url):
            crawl_started.set()
            await asyncio.wait_for(fingerprint_started.wait(), timeout=1)
            return await super().crawl(url)

    class _WaitingAnalyzer(FakeAnalyzer):
        async def analyze(self, record):
            fingerprint_started.set()
            await asyncio.wait_for(crawl_started.wait(), timeout=1)
            return await super().analyze(record)

    pipeline = build_pipeline(store, crawler=_WaitingCrawler(), analyzer=_WaitingAnalyzer())

    result = await pipeline.orchestrator.run(1)

    assert result.success is True


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_run() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.CRAWLED), plan_tier="pro")
    pipeline = build_pipeline(store, publisher=FakePublisher(PublishOutcome(success=False, error="Bad value type")))

    result = await pipeline.orchestrator.run(1)

    assert result.success is True
    assert result.publish_ok is False
    assert result.error == "Data format error. Please contact support if this persists."
    assert store.status_of(1) == RecordStatus.ERROR


@pytest.mark.asyncio
async def test_free_tier_skips_publish_unless_overridden() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.CRAWLED), plan_tier="free")
    pipeline = build_pipeline(store)

    skipped = await pipeline.orchestrator.run(1)
    forced = await pipeline.orchestrator.run(1, auto_publish=True)

    assert skipped.publish_ok is False
    assert forced.publish_ok is True
    assert len(pipeline.publisher.create_calls) == 1


@pytest.mark.asyncio
async def test_explicit_auto_publish_false_skips_publish_for_paid_tier() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(), plan_tier="agency")
    pipeline = build_pipeline(store)

    result = await pipeline.orchestrator.run(1, auto_publish=False)

    assert result.publish_ok is False
    assert pipeline.assembler.calls == []


@pytest.mark.asyncio
async def test_schedule_next_persists_next_run_even_when_crawl_fails() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.PENDING, automation_enabled=True), plan_tier="pro")
    pipeline = build_pipeline(store, crawler=FakeCrawler(RuntimeError("dns failure")))
    before = datetime.now(UTC)

    await pipeline.orchestrator.run(1, schedule_next=True)

    next_run_at = store.records[1].next_run_at
    assert next_run_at is not None
    assert timedelta(days=7) <= next_run_at - before < timedelta(days=7, minutes=1)


@pytest.mark.asyncio
async def test_error_record_is_reset_to_crawling_before_run() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(status=RecordStatus.ERROR, error_message="old failure"), plan_tier="free")
    pipeline = build_pipeline(store)

    await pipeline.orchestrator.run(1)

    assert store.statuses_for(1)[0] == RecordStatus.CRAWLING
    assert store.status_of(1) == RecordStatus.CRAWLED
    assert store.records[1].error_message is None


@pytest.mark.asyncio
async def test_missing_record_or_team_fails_fast() -> None:
    store = InMemoryRecordStore()
    pipeline = build_pipeline(store)

    with pytest.raises(RecordNotFoundError):
        await pipeline.orchestrator.run(99)

    store.records[5] = make_record(5, team_id=77)
    with pytest.raises(TeamNotFoundError):
        await pipeline.orchestrator.run(5)
    assert pipeline.crawler.calls == []


@pytest.mark.asyncio
async def test_run_id_is_bound_only_during_run() -> None:
    store = InMemoryRecordStore()
    store.add(make_record(), plan_tier="free")
    seen: list[str | None] = []

    class _RunIdCrawler(FakeCrawler):
        async def crawl(self, url):
            seen.append(get_run_id())
            return await super().crawl(url)

    pipeline = build_pipeline(store, crawler=_RunIdCrawler())

    await pipeline.orchestrator.run(1)

    assert seen and seen[0]
    assert get_run_id() is None
