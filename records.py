"""Result types shared by the scraper pipeline and the HTTP service."""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

import requests

TITLE_PLACEHOLDER = "Unable to fetch title"
DESCRIPTION_PLACEHOLDER = "Unable to fetch description"
DEFAULT_CATEGORY = "Kitchen & Dining"

CAPTCHA_MESSAGE = (
    "Amazon detected bot traffic and returned a CAPTCHA page. "
    "Please manually enter product details."
)
BLOCKED_MESSAGE = (
    "Amazon is blocking automated requests. "
    "Please manually enter the product details instead."
)
TIMEOUT_MESSAGE = (
    "Request timed out. Amazon may be slow or blocking. "
    "Please try again or enter details manually."
)
UNRECOGNIZED_MESSAGE = "The URL format may not be recognized or the page is unavailable."

BLOCKING_STATUSES = (403, 429, 500, 503)


class ScrapeError(Exception):
    """Base class for failures that abort the whole pipeline."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def user_message(self) -> str:
        return UNRECOGNIZED_MESSAGE


class InvalidInput(ScrapeError):
    """The input is neither an ASIN nor an Amazon product URL."""


class BotDetected(ScrapeError):
    """Amazon served a CAPTCHA / automated-traffic page instead of the product."""

    @property
    def user_message(self) -> str:
        return CAPTCHA_MESSAGE


class AllVariantsFailed(ScrapeError):
    """Every URL variant failed or exhausted its retries."""

    def __init__(self, message, last_error=None, last_status=None, attempts=None):
        super().__init__(message)
        self.last_error = last_error
        self.last_status = last_status
        self.attempts = attempts or []

    @property
    def user_message(self) -> str:
        if isinstance(self.last_error, requests.Timeout):
            return TIMEOUT_MESSAGE
        if self.last_status in BLOCKING_STATUSES:
            return BLOCKED_MESSAGE
        return UNRECOGNIZED_MESSAGE


class UnexpectedError(ScrapeError):
    """Any other fault during a fetch, reported under the original exception's type name."""

    def __init__(self, cause: BaseException):
        super().__init__(str(cause) or repr(cause))
        self.cause = cause

    @property
    def kind(self) -> str:
        return type(self.cause).__name__


@dataclass
class FetchAttempt:
    """One HTTP round trip against one URL variant."""

    url: str
    attempt: int
    outcome: str
    status_code: Optional[int] = None
    body: str = ""
    final_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "success"


@dataclass(frozen=True)
class ProductRecord:
    asin: Optional[str] = None
    amazon_url: Optional[str] = None
    title: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    material: Optional[str] = None
    colour: Optional[str] = None
    rating: Optional[float] = None
    video_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def populated_fields(self) -> List[str]:
        return [name for name, value in self.to_dict().items() if value not in (None, "")]


@dataclass
class ScrapeResult:
    """Tagged pipeline outcome: a record, or an error with a partial record.

    The HTTP layer always serializes this with a 200 status; callers tell
    success from failure by the presence of ``error`` in the body.
    """

    record: ProductRecord = field(default_factory=ProductRecord)
    error: Optional[ScrapeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: ScrapeError, partial: Optional[ProductRecord] = None) -> "ScrapeResult":
        return cls(record=partial or ProductRecord(), error=error)

    def to_response(self) -> Dict[str, Any]:
        record = self.record
        body = {
            "title": record.title or TITLE_PLACEHOLDER,
            "price": record.price,
            "image_url": record.image_url or "",
            "description": record.description or DESCRIPTION_PLACEHOLDER,
            "category": record.category or DEFAULT_CATEGORY,
            "asin": record.asin,
            "amazon_url": record.amazon_url or "",
            "brand": record.brand or None,
            "material": record.material or None,
            "colour": record.colour or None,
            "rating": record.rating,
            "video_url": record.video_url or None,
        }
        if self.error is not None:
            body["error"] = f"{self.error.kind}: {self.error}"
            body["error_type"] = self.error.kind
            body["message"] = self.error.user_message
        return body
