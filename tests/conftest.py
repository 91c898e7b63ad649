import pytest

from fakes import FakeSession, build_product_html

SCRAPER_ENV_VARS = [
    "SCRAPER_TIMEOUT",
    "SCRAPER_MAX_RETRIES",
    "SCRAPER_BACKOFF",
    "SCRAPER_BACKOFF_MAX",
    "SCRAPER_DEFAULT_DOMAIN",
    "SCRAPER_USE_CLOUDSCRAPER",
    "SCRAPER_FIELD_DELAY_MIN",
    "SCRAPER_FIELD_DELAY_MAX",
]


@pytest.fixture(autouse=True)
def clean_scraper_env(monkeypatch):
    """Run every test against the default configuration."""
    for name in SCRAPER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def sleeps():
    """A sleep() stand-in that records the requested waits."""
    waits = []

    def sleep(seconds):
        waits.append(seconds)

    sleep.waits = waits
    return sleep


@pytest.fixture
def product_html():
    return build_product_html
