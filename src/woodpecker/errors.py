"""Exception taxonomy shared by every Woodpecker layer.

  ValidationError        rejected before any I/O (bad extension, oversize file, missing field)
  NotFoundError          referenced record does not exist
  ExtractionError        content could not be turned into text (recorded on the source)
  CrawlError             scrape/crawl job failure or timeout
  TransientServiceError  rate limit, quota, network or upstream failure (never retried)
  PersistenceError       datastore write failure
  InvalidTransitionError illegal lifecycle / session state change
"""

from __future__ import annotations

from enum import Enum


class WoodpeckerError(Exception):
    """Base class for all errors raised by Woodpecker."""


class ValidationError(WoodpeckerError):
    """Input rejected before any network or storage call was made."""


class NotFoundError(WoodpeckerError):
    """A source, workspace or conversation does not exist."""


class ExtractionError(WoodpeckerError):
    """Raw content could not be converted into usable text."""


class CrawlError(ExtractionError):
    """The crawl service failed, rejected the request, or timed out."""


class PersistenceError(WoodpeckerError):
    """A datastore write failed; the current operation was aborted."""


class InvalidTransitionError(WoodpeckerError):
    """A state machine was asked to make a transition it does not allow."""


class ServiceErrorCategory(str, Enum):
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK = "network"
    SERVICE = "service"


class TransientServiceError(WoodpeckerError):
    """An upstream service (completion endpoint, crawler) refused or failed.

    Attributes:
        category: Distinguishing category surfaced to the caller.
        status: HTTP status code when one was received.
    """

    def __init__(
        self,
        message: str,
        category: ServiceErrorCategory = ServiceErrorCategory.SERVICE,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status = status

    @classmethod
    def from_status(cls, status: int, message: str = "") -> TransientServiceError:
        """Map an HTTP status to a categorised error (429, 402, everything else)."""
        if status == 429:
            category = ServiceErrorCategory.RATE_LIMIT
            default = "Rate limit exceeded. Please try again in a moment."
        elif status == 402:
            category = ServiceErrorCategory.QUOTA_EXCEEDED
            default = "Usage limit reached. Please add credits to continue."
        else:
            category = ServiceErrorCategory.SERVICE
            default = "Failed to get AI response"
        return cls(message or default, category=category, status=status)
