"""Shape checks for crawl payloads before they are stored on a record."""

from __future__ import annotations

from datetime import datetime
import re
from typing import Annotated, Any
from urllib.parse import urlparse

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from gemflush.services.automation.errors import CrawlValidationError

PARTIAL_DATE_PATTERN = r"^\d{4}(-\d{2}(-\d{2})?)?$"
_SOCIAL_HANDLE_RE = re.compile(r"^@?[\w.-]+$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

OptionalText = Annotated[str | None, Field(default=None, min_length=1, max_length=200)]


class _CrawlModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SocialLinks(_CrawlModel):
    facebook: str | None = None
    instagram: str | None = None
    linkedin: str | None = None
    twitter: str | None = None

    @field_validator("facebook", "instagram", "linkedin", "twitter")
    @classmethod
    def _url_or_handle(cls, value: str | None) -> str | None:
        if value is None:
            return value
        parsed = urlparse(value)
        if parsed.scheme and parsed.netloc:
            return value
        if _SOCIAL_HANDLE_RE.match(value):
            return value
        raise ValueError("Must be a valid URL or social media handle (e.g., @username)")


class Location(_CrawlModel):
    address: str | None = Field(default=None, min_length=1, max_length=500)
    city: str | None = Field(default=None, min_length=1, max_length=100)
    state: str | None = Field(default=None, min_length=1, max_length=100)
    country: str | None = Field(default=None, min_length=2, max_length=2)
    postal_code: str | None = Field(default=None, max_length=20, alias="postalCode")
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


class BusinessDetails(_CrawlModel):
    industry: OptionalText
    sector: OptionalText
    business_type: OptionalText = Field(default=None, alias="businessType")
    legal_form: OptionalText = Field(default=None, alias="legalForm")
    founded: str | None = Field(default=None, pattern=PARTIAL_DATE_PATTERN)
    dissolved: str | None = Field(default=None, pattern=PARTIAL_DATE_PATTERN)
    employee_count: int | None = Field(default=None, gt=0, alias="employeeCount")
    revenue: str | None = Field(default=None, max_length=200)
    locations: int | None = Field(default=None, ge=0)
    products: list[str] | None = None
    services: list[str] | None = None
    brands: list[str] | None = None
    parent_company: OptionalText = Field(default=None, alias="parentCompany")
    subsidiaries: list[str] | None = None
    partnerships: list[str] | None = None
    awards: list[str] | None = None
    certifications: list[str] | None = None
    target_market: str | None = Field(default=None, max_length=200, alias="targetMarket")
    headquarters: str | None = Field(default=None, max_length=200)
    ceo: OptionalText
    stock_symbol: str | None = Field(default=None, pattern=r"^[A-Z]{1,5}$", alias="stockSymbol")

    @field_validator("employee_count", mode="before")
    @classmethod
    def _digits_to_int(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.isdigit():
                raise ValueError("employeeCount must be a positive integer")
            return int(value)
        return value


class LlmEnhanced(_CrawlModel):
    extracted_entities: list[str] | None = Field(default=None, alias="extractedEntities")
    business_category: str | None = Field(default=None, max_length=200, alias="businessCategory")
    service_offerings: list[str] | None = Field(default=None, alias="serviceOfferings")
    target_audience: str | None = Field(default=None, max_length=200, alias="targetAudience")
    key_differentiators: list[str] | None = Field(default=None, alias="keyDifferentiators")
    confidence: float | None = Field(default=None, ge=0, le=1)
    model: str | None = None
    processed_at: datetime | None = Field(default=None, alias="processedAt")


class CrawlPayload(_CrawlModel):
    name: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    phone: str | None = Field(default=None, max_length=50, pattern=r"^[+\d\s().-]+$")
    email: str | None = Field(default=None, max_length=200)
    address: str | None = Field(default=None, max_length=500)
    location: Location | None = None
    social_links: SocialLinks | None = Field(default=None, alias="socialLinks")
    structured_data: dict[str, Any] | None = Field(default=None, alias="structuredData")
    meta_tags: dict[str, str] | None = Field(default=None, alias="metaTags")
    founded: str | None = Field(default=None, pattern=PARTIAL_DATE_PATTERN)
    categories: list[str] | None = None
    services: list[str] | None = None
    image_url: AnyHttpUrl | None = Field(default=None, alias="imageUrl")
    business_details: BusinessDetails | None = Field(default=None, alias="businessDetails")
    llm_enhanced: LlmEnhanced | None = Field(default=None, alias="llmEnhanced")

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str | None) -> str | None:
        if value is not None and not _EMAIL_RE.match(value):
            raise ValueError("Invalid email address")
        return value

    @model_validator(mode="after")
    def _name_or_description(self) -> "CrawlPayload":
        if not self.name and not self.description:
            raise ValueError("CrawlData must have at least name or description")
        return self


class PydanticCrawlPayloadValidator:
    def validate(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            model = CrawlPayload.model_validate(payload)
        except ValidationError as exc:
            issues = [
                f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}"
                for error in exc.errors()
            ]
            raise CrawlValidationError(
                f"Invalid crawl data: {'; '.join(issues)}",
                issues=issues,
            ) from exc
        return model.model_dump(mode="json", by_alias=True, exclude_none=True)
