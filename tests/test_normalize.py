from unittest.mock import patch

import pytest

import scraper
from records import InvalidInput


@pytest.mark.parametrize("raw", ["B0EXAMPLE1", "b0example1", "  B0EXAMPLE1\n"])
def test_raw_asin_is_accepted_without_url_parsing(raw):
    with patch.object(scraper, "urlparse", side_effect=AssertionError("parsed as URL")):
        assert scraper.normalize_asin(raw) == "B0EXAMPLE1"


@pytest.mark.parametrize(
    "url",
    [
        "https://www.amazon.co.uk/dp/B0EXAMPLE1",
        "https://www.amazon.co.uk/Some-Title/dp/b0example1/ref=sr_1_1?keywords=teapot",
        "https://www.amazon.com/gp/product/B0EXAMPLE1?th=1",
        "https://www.amazon.de/some/listing?ASIN=B0EXAMPLE1&tag=abc-21",
        "http://smile.amazon.com/dp/B0EXAMPLE1",
    ],
)
def test_asin_extracted_from_supported_url_shapes(url):
    assert scraper.normalize_asin(url) == "B0EXAMPLE1"


def test_dp_path_takes_precedence_over_query():
    url = "https://www.amazon.co.uk/dp/B0EXAMPLE1?asin=B0OTHER222"
    assert scraper.normalize_asin(url) == "B0EXAMPLE1"


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/dp/B0EXAMPLE1",
        "https://evil.test/amazon.co.uk/dp/B0EXAMPLE1",
        "https://shop.test/gp/product/B0EXAMPLE1?asin=B0EXAMPLE1",
    ],
)
def test_non_marketplace_urls_are_rejected(url):
    with pytest.raises(InvalidInput):
        scraper.normalize_asin(url)


@pytest.mark.parametrize(
    "raw",
    [
        "A0EXAMPLE1",  # wrong leading letter
        "1234567890",
        "B0EXAMPLE",  # too short
        "Le Creuset cast iron casserole",
        "www.amazon.co.uk/dp/B0EXAMPLE1",  # no scheme
        "https://www.amazon.co.uk/s?k=teapot",
        "https://www.amazon.co.uk/dp/B0EXAMPLE12",
        "https://www.amazon.co.uk/dp/A0EXAMPLE1",
    ],
)
def test_unrecognized_inputs_are_rejected(raw):
    with pytest.raises(InvalidInput):
        scraper.normalize_asin(raw)


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_empty_input_is_rejected(raw):
    with pytest.raises(InvalidInput, match="URL is required"):
        scraper.normalize_asin(raw)


@pytest.mark.parametrize(
    "raw, domain",
    [
        ("https://www.amazon.co.uk/dp/B0EXAMPLE1", "amazon.co.uk"),
        ("https://m.amazon.de/dp/B0EXAMPLE1", "amazon.de"),
        ("https://www.amazon.com.au/dp/B0EXAMPLE1", "amazon.com.au"),
        ("B0EXAMPLE1", "amazon.com"),
    ],
)
def test_guess_domain(raw, domain):
    assert scraper.guess_domain(raw) == domain


def test_guess_domain_default_is_configurable(monkeypatch):
    monkeypatch.setenv("SCRAPER_DEFAULT_DOMAIN", "amazon.co.uk")
    assert scraper.guess_domain("B0EXAMPLE1") == "amazon.co.uk"


def test_url_variants_order():
    assert scraper.build_url_variants("B0EXAMPLE1", "amazon.co.uk") == [
        "https://www.amazon.co.uk/dp/B0EXAMPLE1",
        "https://www.amazon.co.uk/gp/product/B0EXAMPLE1",
        "https://m.amazon.co.uk/dp/B0EXAMPLE1",
    ]


@pytest.mark.parametrize(
    "raw",
    [
        "https://[amazon.co.uk/dp/B0EXAMPLE1",
        "https://amazon.co.uk]/dp/B0EXAMPLE1",
    ],
)
def test_malformed_urls_are_rejected(raw):
    with pytest.raises(InvalidInput, match="Not an ASIN or a URL"):
        scraper.normalize_asin(raw)
    assert scraper.guess_domain(raw) == "amazon.com"


@pytest.mark.parametrize("raw", [12345, ["B0EXAMPLE1"], {"url": "B0EXAMPLE1"}])
def test_non_string_input_is_rejected(raw):
    with pytest.raises(InvalidInput, match="URL is required"):
        scraper.normalize_asin(raw)
