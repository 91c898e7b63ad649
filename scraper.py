import json
import os
import random
import re
import sys
import threading
import time
from urllib.parse import parse_qs, urlparse

import cloudscraper
import requests
from cloudscraper.exceptions import CloudflareException
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from extractors import extract_product_fields
from records import (
    AllVariantsFailed,
    BotDetected,
    FetchAttempt,
    InvalidInput,
    ProductRecord,
    ScrapeError,
    ScrapeResult,
    UnexpectedError,
)

# Thread-local storage for the product tag in logs
_thread_local = threading.local()


def set_current_product(tag: str):
    """Set the product (ASIN or raw input) being fetched by this thread."""
    _thread_local.product_tag = str(tag or "")[:20]


def get_current_product_tag() -> str:
    return getattr(_thread_local, "product_tag", "")


def log(message: str, file=sys.stderr):
    """Log a message with the current product prefix."""
    tag = get_current_product_tag()
    if tag:
        print(f"[{tag}] {message}", file=file)
    else:
        print(message, file=file)


ASIN_RE = re.compile(r"^B[A-Z0-9]{9}$", re.IGNORECASE)
# The ASIN must end the path segment so longer codes are not truncated into a match
PATH_PATTERNS = [
    re.compile(r"/dp/(B[A-Z0-9]{9})(?=/|$)", re.IGNORECASE),
    re.compile(r"/gp/product/(B[A-Z0-9]{9})(?=/|$)", re.IGNORECASE),
]
MARKETPLACE_FRAGMENT = "amazon."
DOMAIN_RE = re.compile(r"amazon\.[a-z]{2,3}(?:\.[a-z]{2})?$")

# Statuses worth retrying on the same variant; anything else moves on
RETRYABLE_STATUSES = (500, 503)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Note: no 'br' in Accept-Encoding, Brotli needs the brotli package to decode.
HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-GB,en-US;q=0.9,en;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "DNT": "1",
}

# Phrases that only appear on Amazon's automated-traffic challenge pages
BOT_DETECTION_MARKERS = [
    "sorry, we just need to make sure you're not a robot",
    "enter the characters you see below",
    "to discuss automated access to amazon data",
    "captcha",
]


def _env_float(name, default):
    return float(os.environ.get(name, default))


def _env_int(name, default):
    return int(os.environ.get(name, default))


def human_delay(min_wait=0.05, max_wait=0.35):
    """Sleep for a human-looking interval between field extractions."""
    time.sleep(random.uniform(min_wait, max_wait))


def field_pause():
    human_delay(
        _env_float("SCRAPER_FIELD_DELAY_MIN", "0.05"),
        _env_float("SCRAPER_FIELD_DELAY_MAX", "0.35"),
    )


def normalize_asin(raw):
    """Turn an ASIN, or an Amazon product URL, into an upper-case ASIN.

    Raises InvalidInput before any network call when nothing usable is found.
    """
    value = raw.strip() if isinstance(raw, str) else ""
    if not value:
        raise InvalidInput("URL is required")

    if ASIN_RE.match(value):
        return value.upper()

    try:
        parsed = urlparse(value)
        hostname = parsed.hostname
    except ValueError:
        raise InvalidInput(f"Not an ASIN or a URL: {value[:80]}") from None
    if parsed.scheme not in ("http", "https") or not hostname:
        raise InvalidInput(f"Not an ASIN or a URL: {value[:80]}")

    if MARKETPLACE_FRAGMENT not in hostname:
        raise InvalidInput(f"Not an Amazon URL: {hostname}")

    for pattern in PATH_PATTERNS:
        match = pattern.search(parsed.path)
        if match:
            return match.group(1).upper()

    params = {key.lower(): values for key, values in parse_qs(parsed.query).items()}
    for candidate in params.get("asin", []):
        if ASIN_RE.match(candidate.strip()):
            return candidate.strip().upper()

    raise InvalidInput(
        "Invalid input. Please provide a valid Amazon product URL "
        "(e.g., https://amazon.co.uk/dp/B0EXAMPLE) or ASIN code (e.g., B0EXAMPLE). "
        "Product titles are not supported."
    )


def guess_domain(raw):
    """Marketplace domain for the variant URLs, e.g. 'amazon.co.uk'."""
    default = os.environ.get("SCRAPER_DEFAULT_DOMAIN", "amazon.com")
    if not isinstance(raw, str):
        return default
    try:
        hostname = urlparse(raw.strip()).hostname or ""
    except ValueError:
        return default
    index = hostname.find(MARKETPLACE_FRAGMENT)
    if index == -1:
        return default
    domain = hostname[index:]
    return domain if DOMAIN_RE.match(domain) else default


def build_url_variants(asin, domain):
    return [
        f"https://www.{domain}/dp/{asin}",
        f"https://www.{domain}/gp/product/{asin}",
        f"https://m.{domain}/dp/{asin}",
    ]


def canonical_url(asin, domain):
    return f"https://www.{domain}/dp/{asin}"


def _session_id():
    return f"{random.randint(100, 999)}-{random.randint(1000000, 9999999)}-{random.randint(1000000, 9999999)}"


def build_request_headers(domain):
    """Browser-like headers with a marketplace referer and synthetic session cookies."""
    headers = HEADERS.copy()
    ubid = "ubid-acbuk" if domain.endswith(".co.uk") else "ubid-main"
    session_id = _session_id()
    token = "".join(random.choices("abcdefghijklmnopqrstuvwxyz0123456789", k=24))
    headers["Cookie"] = f"session-id={session_id}; session-token={token}; {ubid}={_session_id()}"
    headers["Referer"] = f"https://www.{domain}/"
    return headers


def build_retry_session():
    """Create a plain Session whose urllib3 layer never retries.

    Retries and backoff happen in fetch_with_retry() so they are logged and
    counted per variant.
    """
    session = requests.Session()
    # read=False re-raises read timeouts as-is so they surface as requests.ReadTimeout
    retry_cfg = Retry(total=0, read=False, raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry_cfg, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def build_cloudscraper_session():
    """A requests-compatible session with a browser-like TLS fingerprint."""
    return cloudscraper.create_scraper(
        browser={"browser": "chrome", "platform": "darwin", "mobile": False}
    )


def build_session():
    if os.environ.get("SCRAPER_USE_CLOUDSCRAPER", "1").lower() in ("0", "false", "no"):
        return build_retry_session()
    return build_cloudscraper_session()


def backoff_delay(attempt, base=None, ceiling=None):
    """Seconds to wait before retry number ``attempt + 1`` (2s, 4s, 6s, capped at 8s)."""
    base = _env_float("SCRAPER_BACKOFF", "2.0") if base is None else base
    ceiling = _env_float("SCRAPER_BACKOFF_MAX", "8.0") if ceiling is None else ceiling
    return min(base * (attempt + 1), ceiling)


def fetch_with_retry(session, url, headers, max_retries=None, timeout=None, sleep=time.sleep):
    """GET one URL variant, retrying transient failures on the same URL.

    500/503 responses and timeouts are retried up to ``max_retries`` times
    with a growing wait. Returns the last FetchAttempt; a timeout on the
    final attempt, or any other RequestException, propagates.
    """
    max_retries = _env_int("SCRAPER_MAX_RETRIES", "3") if max_retries is None else max_retries
    timeout = _env_float("SCRAPER_TIMEOUT", "15") if timeout is None else timeout

    attempt = 0
    while True:
        request_start = time.time()
        try:
            response = session.get(url, headers=headers, timeout=timeout, allow_redirects=True)
        except requests.Timeout:
            log(f"⏱️ Timeout after {timeout:.0f}s on attempt {attempt + 1}/{max_retries + 1} for {url}")
            if attempt >= max_retries:
                raise
            wait = backoff_delay(attempt)
            log(f"💤 Retrying after {wait:.1f}s...")
            sleep(wait)
            attempt += 1
            continue

        duration = time.time() - request_start
        status = response.status_code
        log(f"[Attempt {attempt + 1}/{max_retries + 1}] Status: {status} in {duration:.1f}s, URL: {response.url}")

        if status in RETRYABLE_STATUSES and attempt < max_retries:
            wait = backoff_delay(attempt)
            log(f"💤 Got {status}, waiting {wait:.1f}s before retry {attempt + 2}/{max_retries + 1}...")
            sleep(wait)
            attempt += 1
            continue

        body = response.text if response.ok else ""
        if response.ok and body:
            outcome = "success"
        elif response.ok:
            outcome = "empty"
        elif status in RETRYABLE_STATUSES:
            outcome = "transient-error"
        else:
            outcome = "http-error"
        return FetchAttempt(
            url=url,
            attempt=attempt,
            outcome=outcome,
            status_code=status,
            body=body,
            final_url=response.url or url,
        )


def fetch_product_page(asin, domain, session=None, sleep=time.sleep, **retry_options):
    """Try each URL variant in turn and return the first successful FetchAttempt."""
    if session is None:
        session = build_session()
    headers = build_request_headers(domain)

    last_error = None
    last_status = None
    attempts = []
    for variant in build_url_variants(asin, domain):
        log(f"🔗 Attempting to fetch from: {variant}")
        try:
            attempt = fetch_with_retry(session, variant, headers, sleep=sleep, **retry_options)
        except (requests.RequestException, CloudflareException) as exc:
            log(f"❌ Error fetching {variant}: {exc}")
            last_error = exc
            last_status = None
            outcome = "timeout" if isinstance(exc, requests.Timeout) else "network-error"
            attempts.append(FetchAttempt(url=variant, attempt=0, outcome=outcome))
            continue

        attempts.append(attempt)
        if attempt.ok:
            log(f"✅ Fetched {variant}, HTML length: {len(attempt.body)}")
            return attempt

        last_status = attempt.status_code
        if attempt.outcome == "empty":
            last_error = requests.HTTPError(f"Empty response body from {variant}")
        else:
            last_error = requests.HTTPError(f"HTTP {attempt.status_code} from {variant}")
        log(f"⚠️ Failed with status {attempt.status_code} ({attempt.outcome}) from {variant}")

    log(f"🚫 All {len(attempts)} URL variants failed: {last_error}")
    raise AllVariantsFailed(
        f"All URL variants failed. Amazon may be blocking requests. Last error: {last_error}",
        last_error=last_error,
        last_status=last_status,
        attempts=attempts,
    )


def detect_bot_block(html):
    """Raise BotDetected when the body is a CAPTCHA / automated-traffic page."""
    text = (html or "").lower()
    for marker in BOT_DETECTION_MARKERS:
        if marker in text:
            log(f"🛡️ Amazon returned a bot detection page (marker: {marker!r})")
            raise BotDetected(
                "Amazon detected bot traffic and returned a CAPTCHA page. "
                "Please manually enter product details."
            )


def fetch_amazon_product(raw, session=None, sleep=time.sleep, pause=field_pause, **retry_options):
    """Run the whole pipeline for one input and return a ScrapeResult.

    Never raises: invalid input, exhausted variants, CAPTCHA pages and any
    unexpected fault come back as a failed result with a partial record.
    """
    set_current_product(raw)
    partial = ProductRecord()
    try:
        asin = normalize_asin(raw)
        domain = guess_domain(raw)
        set_current_product(asin)
        partial = ProductRecord(asin=asin, amazon_url=canonical_url(asin, domain))
        log(f"ASIN extracted: {asin} ({domain})")

        attempt = fetch_product_page(asin, domain, session=session, sleep=sleep, **retry_options)
        log(f"Final URL after redirects: {attempt.final_url}")
        detect_bot_block(attempt.body)

        log("Starting data extraction with randomized delays...")
        fields = extract_product_fields(attempt.body, pause=pause)
    except ScrapeError as exc:
        log(f"❌ {exc.kind}: {exc}")
        return ScrapeResult.failure(exc, partial)
    except Exception as exc:
        log(f"💥 Unexpected {type(exc).__name__}: {exc}")
        return ScrapeResult.failure(UnexpectedError(exc), partial)

    for name, value in fields.items():
        shown = value if not isinstance(value, str) else value[:60]
        log(f"  {name}: {shown if value is not None else 'NONE'}")

    record = ProductRecord(asin=partial.asin, amazon_url=partial.amazon_url, **fields)
    log(f"📊 Extracted {len(record.populated_fields())} populated fields")
    return ScrapeResult(record=record)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        target = sys.argv[1].strip()
    else:
        target = input("Enter Amazon product URL or ASIN: ").strip()

    if not target:
        print(" No URL provided. Exiting.", file=sys.stderr)
        sys.exit(1)

    result = fetch_amazon_product(target)
    print(json.dumps(result.to_response(), indent=2, ensure_ascii=False))
