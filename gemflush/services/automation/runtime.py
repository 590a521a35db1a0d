"""Process-wide wiring of the automation components to their adapters."""

from __future__ import annotations

from gemflush.services.automation.contracts import (
    CrawlPayloadValidator,
    Crawler,
    ManualFallbackStore,
    RecordStore,
)
from gemflush.services.automation.crawl import CrawlExecutor
from gemflush.services.automation.fingerprint import FingerprintExecutor
from gemflush.services.automation.orchestrator import CFPOrchestrator
from gemflush.services.automation.publish import PublishDecision
from gemflush.services.automation.scheduler import Scheduler
from gemflush.services.crawler.validation import PydanticCrawlPayloadValidator
from gemflush.services.fallback.storage import FileManualFallbackStore
from gemflush.services.gateways.collaborator import CollaboratorClient
from gemflush.services.gateways.firecrawl import FirecrawlCrawler
from gemflush.services.records.store import SqlRecordStore

_default_orchestrator: CFPOrchestrator | None = None
_default_scheduler: Scheduler | None = None


def build_orchestrator(
    *,
    store: RecordStore | None = None,
    crawler: Crawler | None = None,
    validator: CrawlPayloadValidator | None = None,
    collaborator: CollaboratorClient | None = None,
    fallback_store: ManualFallbackStore | None = None,
) -> CFPOrchestrator:
    store = store or SqlRecordStore()
    collaborator = collaborator or CollaboratorClient()
    return CFPOrchestrator(
        store=store,
        crawl=CrawlExecutor(
            store=store,
            crawler=crawler or FirecrawlCrawler(),
            validator=validator or PydanticCrawlPayloadValidator(),
        ),
        fingerprint=FingerprintExecutor(store=store, analyzer=collaborator),
        publish=PublishDecision(
            store=store,
            assembler=collaborator,
            publisher=collaborator,
            fallback_store=fallback_store or FileManualFallbackStore(),
        ),
    )


def get_orchestrator() -> CFPOrchestrator:
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = build_orchestrator()
    return _default_orchestrator


def set_orchestrator(orchestrator: CFPOrchestrator | None) -> CFPOrchestrator | None:
    global _default_orchestrator
    previous = _default_orchestrator
    _default_orchestrator = orchestrator
    return previous


def get_scheduler() -> Scheduler:
    global _default_scheduler
    if _default_scheduler is None:
        orchestrator = get_orchestrator()
        _default_scheduler = Scheduler(store=orchestrator.store, orchestrator=orchestrator)
    return _default_scheduler


def set_scheduler(scheduler: Scheduler | None) -> Scheduler | None:
    global _default_scheduler
    previous = _default_scheduler
    _default_scheduler = scheduler
    return previous
