from gemflush.services.automation import policy
from gemflush.services.automation.crawl import CrawlExecutor
from gemflush.services.automation.fingerprint import FingerprintExecutor
from gemflush.services.automation.orchestrator import CFPOrchestrator
from gemflush.services.automation.publish import PublishDecision
from gemflush.services.automation.scheduler import Scheduler, SchedulerService

__all__ = [
    "CFPOrchestrator",
    "CrawlExecutor",
    "FingerprintExecutor",
    "PublishDecision",
    "Scheduler",
    "SchedulerService",
    "policy",
]
