"""HTTP client for the analysis, assembly and publishing collaborator service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gemflush.logging_utils import structured_log
from gemflush.services.automation.types import (
    AnalysisResult,
    Notability,
    PublishDTO,
    PublishOptions,
    PublishOutcome,
    Record,
)
from gemflush.settings import settings

logger = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (httpx.NetworkError, httpx.TimeoutException)


class CollaboratorError(Exception):
    pass


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _AnalysisPayload(_Payload):
    visibility_score: float = Field(alias="visibilityScore")
    mention_rate: float | None = Field(default=None, alias="mentionRate")
    sentiment_score: float | None = Field(default=None, alias="sentimentScore")
    accuracy_score: float | None = Field(default=None, alias="accuracyScore")
    avg_rank_position: float | None = Field(default=None, alias="avgRankPosition")
    llm_results: list[Any] = Field(default_factory=list, alias="llmResults")
    competitive_leaderboard: dict[str, Any] | None = Field(default=None, alias="competitiveLeaderboard")


class _NotabilityPayload(_Payload):
    is_notable: bool = Field(alias="isNotable")
    confidence: float = 0.0


class _PublishPreviewPayload(_Payload):
    can_publish: bool = Field(alias="canPublish")
    notability: _NotabilityPayload
    full_entity: dict[str, Any] = Field(alias="fullEntity")
    recommendation: str | None = None


class _PublishResultPayload(_Payload):
    success: bool = False
    id: str | None = None
    error: str | None = None


def _record_body(record: Record) -> dict[str, Any]:
    return {
        "id": record.id,
        "teamId": record.team_id,
        "name": record.name,
        "url": record.url,
        "location": record.location,
        "crawlData": record.crawl_payload,
        "externalEntityId": record.external_entity_id,
    }


def _options_body(options: PublishOptions) -> dict[str, Any]:
    return {
        "target": options.target,
        "includeReferences": options.include_references,
        "enrichmentLevel": options.enrichment_level,
    }


class CollaboratorClient:
    """Fingerprint analyzer, publish assembler and publisher over one HTTP API."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.collaborator_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.collaborator_api_key
        self._timeout_seconds = float(
            settings.collaborator_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            return await client.request(method, path, json=json)

    @retry(
        retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        return await self._send(method, path, json=json)

    async def analyze(self, record: Record) -> AnalysisResult:
        response = await self._request("POST", "/fingerprints", json={"record": _record_body(record)})
        body = self._json_or_raise(response, operation="fingerprint")
        try:
            parsed = _AnalysisPayload.model_validate(body)
        except ValidationError as exc:
            raise CollaboratorError(f"Malformed fingerprint response: {exc.error_count()} errors") from exc
        return AnalysisResult(**parsed.model_dump())

    async def assemble(self, record_id: int) -> PublishDTO:
        response = await self._request("GET", f"/records/{record_id}/publish-preview")
        body = self._json_or_raise(response, operation="publish_preview")
        try:
            parsed = _PublishPreviewPayload.model_validate(body)
        except ValidationError as exc:
            raise CollaboratorError(f"Malformed publish preview: {exc.error_count()} errors") from exc
        return PublishDTO(
            can_publish=parsed.can_publish,
            notability=Notability(
                is_notable=parsed.notability.is_notable,
                confidence=parsed.notability.confidence,
            ),
            full_entity=parsed.full_entity,
            recommendation=parsed.recommendation,
        )

    async def create(
        self,
        record: Record,
        payload: dict[str, Any],
        options: PublishOptions,
    ) -> PublishOutcome:
        # Create is sent once; a lost response may still have created the entity.
        try:
            response = await self._send(
                "POST",
                "/entities",
                json={
                    "record": _record_body(record),
                    "entity": payload,
                    "options": _options_body(options),
                },
            )
        except _RETRYABLE_ERRORS as exc:
            structured_log(
                logger,
                "warning",
                "collaborator.publish_create_interrupted",
                record_id=record.id,
                error_type=exc.__class__.__name__,
            )
            return PublishOutcome(
                success=False,
                error=f"Publish create did not complete ({exc.__class__.__name__})",
            )
        return self._publish_outcome(response, operation="create")

    async def update(
        self,
        external_entity_id: str,
        record: Record,
        payload: dict[str, Any],
        options: PublishOptions,
    ) -> PublishOutcome:
        response = await self._request(
            "PUT",
            f"/entities/{external_entity_id}",
            json={
                "record": _record_body(record),
                "entity": payload,
                "options": _options_body(options),
            },
        )
        outcome = self._publish_outcome(response, operation="update")
        if outcome.success and not outcome.external_entity_id:
            return PublishOutcome(success=True, external_entity_id=external_entity_id)
        return outcome

    def _json_or_raise(self, response: httpx.Response, *, operation: str) -> dict[str, Any]:
        if response.status_code >= 400:
            structured_log(
                logger,
                "warning",
                "collaborator.api_error",
                operation=operation,
                status_code=response.status_code,
            )
            raise CollaboratorError(f"Collaborator {operation} failed with HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise CollaboratorError(f"Collaborator {operation} returned a non-JSON response") from exc

    def _publish_outcome(self, response: httpx.Response, *, operation: str) -> PublishOutcome:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            structured_log(
                logger,
                "warning",
                "collaborator.publish_rejected",
                operation=operation,
                status_code=response.status_code,
            )
            error = body.get("error") if isinstance(body, dict) else None
            return PublishOutcome(
                success=False,
                error=str(error or f"Publish {operation} failed with HTTP {response.status_code}"),
            )
        try:
            parsed = _PublishResultPayload.model_validate(body)
        except ValidationError:
            return PublishOutcome(success=False, error=f"Malformed publish {operation} response")
        return PublishOutcome(
            success=parsed.success,
            external_entity_id=parsed.id,
            error=parsed.error,
        )
