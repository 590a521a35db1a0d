from __future__ import annotations

import json

import httpx
import pytest
from tenacity import wait_none

from gemflush.services.automation.types import PublishOptions
from gemflush.services.gateways.collaborator import CollaboratorClient, CollaboratorError
from tests.unit.services.automation.fakes import make_record

OPTIONS = PublishOptions(target="test.wikidata", enrichment_level=2)


def _client(handler) -> CollaboratorClient:
    return CollaboratorClient(
        base_url="https://collab.test",
        api_key="collab-secret",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_analyze_posts_record_and_parses_scores() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"visibilityScore": 64.5, "mentionRate": 0.4, "llmResults": [{"model": "a"}]})

    result = await _client(handler).analyze(make_record())

    assert result.visibility_score == 64.5
    assert result.mention_rate == 0.4
    assert result.llm_results == [{"model": "a"}]
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/fingerprints"
    assert seen[0].headers["Authorization"] == "Bearer collab-secret"
    assert json.loads(seen[0].content)["record"]["name"] == "Brew Lab Coffee"


@pytest.mark.asyncio
async def test_analyze_http_error_raises() -> None:
    with pytest.raises(CollaboratorError, match="HTTP 503"):
        await _client(lambda request: httpx.Response(503)).analyze(make_record())


@pytest.mark.asyncio
async def test_assemble_parses_publish_preview() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/records/1/publish-preview"
        return httpx.Response(
            200,
            json={
                "canPublish": False,
                "notability": {"isNotable": False, "confidence": 0.2},
                "fullEntity": {"labels": {}},
                "recommendation": "Add independent references",
            },
        )

    dto = await _client(handler).assemble(1)

    assert dto.can_publish is False
    assert dto.notability.is_notable is False
    assert dto.notability.confidence == 0.2
    assert dto.recommendation == "Add independent references"


@pytest.mark.asyncio
async def test_assemble_malformed_body_raises() -> None:
    with pytest.raises(CollaboratorError, match="Malformed publish preview"):
        await _client(lambda request: httpx.Response(200, json={"canPublish": True})).assemble(1)


@pytest.mark.asyncio
async def test_create_posts_entity_with_options() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/entities"
        seen.append(json.loads(request.content))
        return httpx.Response(201, json={"success": True, "id": "Q4242"})

    outcome = await _client(handler).create(make_record(), {"labels": {}}, OPTIONS)

    assert outcome.success is True
    assert outcome.external_entity_id == "Q4242"
    assert seen[0]["options"] == {"target": "test.wikidata", "includeReferences": True, "enrichmentLevel": 2}


@pytest.mark.asyncio
async def test_update_keeps_existing_id_when_response_omits_it() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        assert request.url.path == "/entities/X123"
        return httpx.Response(200, json={"success": True})

    outcome = await _client(handler).update("X123", make_record(external_entity_id="X123"), {}, OPTIONS)

    assert outcome.success is True
    assert outcome.external_entity_id == "X123"


@pytest.mark.asyncio
async def test_publish_rejection_returns_failed_outcome() -> None:
    outcome = await _client(
        lambda request: httpx.Response(422, json={"error": "Bad value type for P856"})
    ).create(make_record(), {}, OPTIONS)

    assert outcome.success is False
    assert outcome.error == "Bad value type for P856"


@pytest.mark.asyncio
async def test_network_errors_are_retried_before_raising(monkeypatch) -> None:
    monkeypatch.setattr(
        CollaboratorClient,
        "_request",
        CollaboratorClient._request.retry_with(wait=wait_none()),
    )
    attempts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(httpx.ConnectError):
        await _client(handler).assemble(1)

    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_create_is_not_resent_after_read_timeout() -> None:
    attempts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("read timed out", request=request)
        return httpx.Response(201, json={"success": True, "id": "Q2"})

    outcome = await _client(handler).create(make_record(), {"labels": {}}, OPTIONS)

    assert len(attempts) == 1
    assert outcome.success is False
    assert outcome.external_entity_id is None
    assert "ReadTimeout" in outcome.error


@pytest.mark.asyncio
async def test_update_is_retried_after_read_timeout(monkeypatch) -> None:
    monkeypatch.setattr(
        CollaboratorClient,
        "_request",
        CollaboratorClient._request.retry_with(wait=wait_none()),
    )
    attempts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("read timed out", request=request)
        return httpx.Response(200, json={"success": True, "id": "X123"})

    outcome = await _client(handler).update("X123", make_record(external_entity_id="X123"), {}, OPTIONS)

    assert len(attempts) == 2
    assert outcome.success is True
    assert outcome.external_entity_id == "X123"
