from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ApiMeta(BaseModel):
    request_id: str | None = None

    model_config = ConfigDict(extra="forbid")


class CFPRunRequest(BaseModel):
    auto_publish: bool | None = None
    schedule_next: bool = False

    model_config = ConfigDict(extra="forbid")


class CFPRunData(BaseModel):
    record_id: int
    success: bool
    crawl_ok: bool
    fingerprint_ok: bool
    publish_ok: bool
    error: str | None = None
    duration_ms: int

    model_config = ConfigDict(extra="forbid")


class CFPRunEnvelope(BaseModel):
    data: CFPRunData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class ProcessDueRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=100)
    catch_missed: bool | None = None

    model_config = ConfigDict(extra="forbid")


class SchedulerSummaryData(BaseModel):
    total: int
    success: int
    skipped: int
    failed: int

    model_config = ConfigDict(extra="forbid")


class SchedulerSummaryEnvelope(BaseModel):
    data: SchedulerSummaryData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")
