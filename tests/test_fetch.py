import pytest
import requests
from cloudscraper.exceptions import CloudflareChallengeError

import scraper
from records import BLOCKED_MESSAGE, TIMEOUT_MESSAGE, AllVariantsFailed, BotDetected
from fakes import FakeResponse

ASIN = "B0EXAMPLE1"
DOMAIN = "amazon.co.uk"
V1, V2, V3 = scraper.build_url_variants(ASIN, DOMAIN)
PAGE = "<html><body><span id='productTitle'>Teapot</span></body></html>"


def test_retries_same_variant_on_503_then_succeeds(fake_session, sleeps):
    session = fake_session({
        V1: [FakeResponse(503), FakeResponse(503), FakeResponse(200, PAGE)],
        V2: [FakeResponse(200, "<html>second</html>")],
    })

    attempt = scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert attempt.ok
    assert attempt.body == PAGE
    assert attempt.url == V1
    assert attempt.attempt == 2
    assert session.calls == [V1, V1, V1]
    assert len(sleeps.waits) == 2
    assert sleeps.waits[0] < sleeps.waits[1]


def test_retry_ceiling_then_next_variant(fake_session, sleeps):
    session = fake_session({
        V1: [FakeResponse(503)],
        V2: [FakeResponse(200, PAGE)],
    })

    attempt = scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert attempt.url == V2
    # one initial try plus three retries on the first variant
    assert session.calls == [V1] * 4 + [V2]
    assert sleeps.waits == [2.0, 4.0, 6.0]


def test_non_retryable_errors_exhaust_all_variants(fake_session, sleeps):
    session = fake_session({
        V1: [FakeResponse(404)],
        V2: [FakeResponse(404)],
        V3: [FakeResponse(403)],
    })

    with pytest.raises(AllVariantsFailed) as excinfo:
        scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    error = excinfo.value
    assert session.calls == [V1, V2, V3]
    assert sleeps.waits == []
    assert isinstance(error.last_error, requests.HTTPError)
    assert V3 in str(error.last_error)
    assert error.last_status == 403
    assert [a.outcome for a in error.attempts] == ["http-error"] * 3
    assert error.user_message == BLOCKED_MESSAGE


def test_network_error_abandons_variant_immediately(fake_session, sleeps):
    session = fake_session({
        V1: [requests.ConnectionError("connection reset")],
        V2: [FakeResponse(200, PAGE)],
    })

    attempt = scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert attempt.url == V2
    assert session.calls == [V1, V2]
    assert sleeps.waits == []


def test_cloudflare_challenge_moves_to_next_variant(fake_session, sleeps):
    session = fake_session({
        V1: [CloudflareChallengeError("challenge detected")],
        V2: [FakeResponse(200, PAGE)],
    })

    attempt = scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert attempt.url == V2
    assert session.calls == [V1, V2]
    assert sleeps.waits == []


def test_timeouts_are_retried_and_reported(fake_session, sleeps):
    timeout = requests.Timeout("read timed out")
    session = fake_session({V1: [timeout], V2: [timeout], V3: [timeout]})

    with pytest.raises(AllVariantsFailed) as excinfo:
        scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert session.calls == [V1] * 4 + [V2] * 4 + [V3] * 4
    assert sleeps.waits == [2.0, 4.0, 6.0] * 3
    assert excinfo.value.last_error is timeout
    assert excinfo.value.user_message == TIMEOUT_MESSAGE


def test_empty_body_moves_to_next_variant(fake_session, sleeps):
    session = fake_session({
        V1: [FakeResponse(200, "")],
        V2: [FakeResponse(200, PAGE)],
    })

    attempt = scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert attempt.url == V2
    assert session.calls == [V1, V2]


def test_backoff_grows_to_ceiling():
    delays = [scraper.backoff_delay(n) for n in range(6)]
    assert delays == [2.0, 4.0, 6.0, 8.0, 8.0, 8.0]


def test_backoff_is_configurable(monkeypatch):
    monkeypatch.setenv("SCRAPER_BACKOFF", "0.5")
    monkeypatch.setenv("SCRAPER_BACKOFF_MAX", "1")
    assert [scraper.backoff_delay(n) for n in range(3)] == [0.5, 1.0, 1.0]


def test_max_retries_from_environment(monkeypatch, fake_session, sleeps):
    monkeypatch.setenv("SCRAPER_MAX_RETRIES", "1")
    session = fake_session({V1: [FakeResponse(500)], V2: [FakeResponse(200, PAGE)]})

    scraper.fetch_product_page(ASIN, DOMAIN, session=session, sleep=sleeps)

    assert session.calls == [V1, V1, V2]


def test_request_headers_look_like_a_browser():
    headers = scraper.build_request_headers("amazon.co.uk")

    assert "Chrome" in headers["User-Agent"]
    assert headers["Referer"] == "https://www.amazon.co.uk/"
    assert "session-id=" in headers["Cookie"]
    assert "ubid-acbuk=" in headers["Cookie"]
    assert "ubid-main=" in scraper.build_request_headers("amazon.com")["Cookie"]


def test_plain_session_when_cloudscraper_disabled(monkeypatch):
    monkeypatch.setenv("SCRAPER_USE_CLOUDSCRAPER", "0")
    session = scraper.build_session()
    assert type(session) is requests.Session


@pytest.mark.parametrize(
    "html",
    [
        "<p>Sorry, we just need to make sure you're not a robot.</p>",
        "<h4>Enter the characters you see below</h4>",
        "<form action='/errors/validateCaptcha'></form>",
    ],
)
def test_bot_pages_are_detected(html):
    with pytest.raises(BotDetected):
        scraper.detect_bot_block(html)


def test_product_page_passes_bot_check():
    assert scraper.detect_bot_block(PAGE) is None
