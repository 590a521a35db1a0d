from __future__ import annotations

from gemflush.services.automation import runtime
from gemflush.services.automation.orchestrator import CFPOrchestrator
from gemflush.services.automation.scheduler import Scheduler


def get_orchestrator() -> CFPOrchestrator:
    return runtime.get_orchestrator()


def get_scheduler() -> Scheduler:
    return runtime.get_scheduler()
