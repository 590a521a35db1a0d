from __future__ import annotations


class AutomationError(Exception):
    """Base class for failures raised by the automation pipeline."""

    retryable = False


class RecordNotFoundError(AutomationError):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"Business not found: {record_id}")
        self.record_id = record_id


class TeamNotFoundError(AutomationError):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"Team not found for business: {record_id}")
        self.record_id = record_id


class TransientCrawlError(AutomationError):
    """The crawler call errored or reported failure; worth another attempt."""

    retryable = True


class CrawlValidationError(AutomationError):
    """The crawl payload is malformed; the site content itself is the problem."""

    def __init__(self, message: str, *, issues: list[str] | None = None) -> None:
        super().__init__(message)
        self.issues = list(issues or [])


class PublishFailedError(AutomationError):
    """The publisher returned no success flag or no entity id."""
