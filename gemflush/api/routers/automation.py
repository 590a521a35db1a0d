from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from gemflush.api.responses import success_payload
from gemflush.api.runtime_deps import get_orchestrator, get_scheduler
from gemflush.api.schemas import (
    CFPRunData,
    CFPRunEnvelope,
    CFPRunRequest,
    ProcessDueRequest,
    SchedulerSummaryData,
    SchedulerSummaryEnvelope,
)
from gemflush.services.automation.orchestrator import CFPOrchestrator
from gemflush.services.automation.scheduler import Scheduler

router = APIRouter(prefix="/automation", tags=["api-automation"])


@router.post(
    "/records/{record_id}/cfp",
    response_model=CFPRunEnvelope,
)
async def run_cfp(
    record_id: int,
    request: Request,
    payload: CFPRunRequest | None = None,
    orchestrator: CFPOrchestrator = Depends(get_orchestrator),
):
    payload = payload or CFPRunRequest()
    result = await orchestrator.run(
        record_id,
        auto_publish=payload.auto_publish,
        schedule_next=payload.schedule_next,
    )
    data = CFPRunData(
        record_id=result.record_id,
        success=result.success,
        crawl_ok=result.crawl_ok,
        fingerprint_ok=result.fingerprint_ok,
        publish_ok=result.publish_ok,
        error=result.error,
        duration_ms=result.duration_ms,
    )
    return success_payload(request, data=data.model_dump())


@router.post(
    "/process-due",
    response_model=SchedulerSummaryEnvelope,
)
async def process_due(
    request: Request,
    payload: ProcessDueRequest | None = None,
    scheduler: Scheduler = Depends(get_scheduler),
):
    payload = payload or ProcessDueRequest()
    summary = await scheduler.process_due(
        batch_size=payload.batch_size,
        catch_missed=payload.catch_missed,
    )
    data = SchedulerSummaryData(
        total=summary.total,
        success=summary.success,
        skipped=summary.skipped,
        failed=summary.failed,
    )
    return success_payload(request, data=data.model_dump())
