from __future__ import annotations

import logging
from typing import Any

import httpx

from gemflush.logging_utils import structured_log
from gemflush.services.automation.types import CrawlResponse
from gemflush.settings import settings

logger = logging.getLogger(__name__)

SCRAPE_PATH = "/v1/scrape"

EXTRACTION_PROMPT = (
    "Extract the business identity, contact details, location, services and "
    "social links stated on this webpage. Only return information that is "
    "explicitly present."
)

EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "businessName": {"type": "string"},
        "description": {"type": "string"},
        "industry": {"type": "string"},
        "services": {"type": "array", "items": {"type": "string"}},
        "phone": {"type": "string"},
        "email": {"type": "string"},
        "address": {"type": "string"},
        "city": {"type": "string"},
        "state": {"type": "string"},
        "country": {"type": "string"},
        "postalCode": {"type": "string"},
        "founded": {"type": "string"},
        "socialMedia": {
            "type": "object",
            "properties": {
                "facebook": {"type": "string"},
                "instagram": {"type": "string"},
                "twitter": {"type": "string"},
                "linkedin": {"type": "string"},
            },
        },
        "certifications": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["businessName"],
}


class FirecrawlCrawler:
    """Single-attempt scrape with LLM extraction; retries belong to the caller."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = (api_url or settings.firecrawl_api_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.firecrawl_api_key
        self._timeout_seconds = float(
            settings.firecrawl_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

    async def crawl(self, url: str) -> CrawlResponse:
        if not self._api_key:
            return CrawlResponse(success=False, error="Firecrawl API key is not configured")

        request_body = {
            "url": url,
            "formats": ["extract"],
            "onlyMainContent": True,
            "extract": {"prompt": EXTRACTION_PROMPT, "schema": EXTRACTION_SCHEMA},
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                headers=headers,
                transport=self._transport,
            ) as client:
                response = await client.post(f"{self._api_url}{SCRAPE_PATH}", json=request_body)
        except httpx.HTTPError as exc:
            structured_log(
                logger,
                "warning",
                "firecrawl.request_failed",
                url=url,
                error_type=exc.__class__.__name__,
            )
            return CrawlResponse(success=False, error=f"Firecrawl request failed: {exc.__class__.__name__}")

        if response.status_code == 429:
            return CrawlResponse(success=False, error="Firecrawl Rate Limit Exceeded (429)")
        if response.status_code >= 400:
            structured_log(
                logger,
                "warning",
                "firecrawl.api_error",
                url=url,
                status_code=response.status_code,
            )
            return CrawlResponse(
                success=False,
                error=f"Firecrawl API Error {response.status_code}: {response.text[:200]}",
            )

        try:
            body = response.json()
        except ValueError:
            return CrawlResponse(success=False, error="Firecrawl returned a non-JSON response")

        if not body.get("success"):
            return CrawlResponse(success=False, error=str(body.get("error") or "Firecrawl scrape failed"))
        extracted = (body.get("data") or {}).get("extract") or {}
        return CrawlResponse(success=True, data=payload_from_extract(extracted))


def payload_from_extract(extracted: dict[str, Any]) -> dict[str, Any]:
    """Map Firecrawl's extraction schema onto the crawl payload shape."""
    if not extracted:
        return {}
    payload: dict[str, Any] = {}
    for source_key, target_key in (
        ("businessName", "name"),
        ("description", "description"),
        ("phone", "phone"),
        ("email", "email"),
        ("address", "address"),
        ("founded", "founded"),
        ("services", "services"),
    ):
        value = extracted.get(source_key)
        if value not in (None, "", []):
            payload[target_key] = value

    location = {
        key: extracted[key]
        for key in ("city", "state", "country", "postalCode")
        if extracted.get(key)
    }
    if extracted.get("address"):
        location["address"] = extracted["address"]
    if len(str(location.get("country", ""))) != 2:
        location.pop("country", None)
    if location:
        payload["location"] = location

    social = {key: value for key, value in (extracted.get("socialMedia") or {}).items() if value}
    if social:
        payload["socialLinks"] = social

    details = {}
    if extracted.get("industry"):
        details["industry"] = extracted["industry"]
    if extracted.get("certifications"):
        details["certifications"] = extracted["certifications"]
    if details:
        payload["businessDetails"] = details
    return payload
