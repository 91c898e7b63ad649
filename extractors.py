"""Field extraction for Amazon product pages.

Every output field is a cascade of strategies ordered from most to least
specific. A strategy takes a ``Page`` and returns a value or ``None``; the
first non-empty value wins. Missing markup never raises, it just leaves the
field as ``None``.
"""

import html as html_lib
import json
import re
from functools import cached_property
from typing import Any, Callable, Dict, Iterator, NamedTuple, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

DESCRIPTION_MAX_LENGTH = 500
IMAGE_URL_TEMPLATE = "https://m.media-amazon.com/images/I/{}._AC_UL1000_.jpg"

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
# A JSON string literal body, honouring backslash escapes
_JSON_STR = r'"((?:[^"\\]|\\.)+)"'
# Separators Amazon puts between a label and its colon in detail bullets
_LABEL_GAP = r"(?:\s|&nbsp;|&lrm;|&rlm;|\u200e|\u200f)*"


class Page:
    """Raw HTML plus a BeautifulSoup tree built on first use."""

    def __init__(self, html: str):
        self.html = html or ""

    @cached_property
    def soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html, "html.parser")


Strategy = Callable[[Page], Any]


def decode_entities(text: Optional[str]) -> str:
    if not text:
        return ""
    return html_lib.unescape(text).replace("\xa0", " ")


def clean_text(text: Optional[str]) -> str:
    """Strip tags, decode entities and collapse whitespace."""
    if not text:
        return ""
    text = decode_entities(_TAG_RE.sub(" ", text))
    return _WS_RE.sub(" ", text).strip()


def element_text(node) -> Optional[str]:
    if node is None:
        return None
    text = node.get_text(" ", strip=True).replace("\xa0", " ")
    text = _WS_RE.sub(" ", text).strip()
    return text or None


def unescape_json_string(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return value.replace("\\/", "/")


def upgrade_protocol(url: Optional[str]) -> Optional[str]:
    if not url or not isinstance(url, str):
        return None
    url = unescape_json_string(url.strip())
    if url.startswith("//"):
        url = "https:" + url
    return url


def parse_price(text: Optional[str]) -> Optional[float]:
    """Turn '£1,234.56' style text into 1234.56; None when there is no number."""
    if text is None:
        return None
    match = re.search(r"\d[\d,]*(?:\.\d+)?", str(text))
    if not match:
        return None
    return float(match.group().replace(",", ""))


def first_match(strategies: Sequence[Strategy], page: Page) -> Any:
    for strategy in strategies:
        value = strategy(page)
        if value not in (None, ""):
            return value
    return None


def iter_json_ld(page: Page) -> Iterator[Dict[str, Any]]:
    """Yield JSON-LD objects, Product entries first."""
    found = []
    for script in page.soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or script.get_text())
        except ValueError:
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            found.append(item)
            graph = item.get("@graph")
            if isinstance(graph, list):
                found.extend(g for g in graph if isinstance(g, dict))
    yield from sorted(found, key=lambda item: item.get("@type") != "Product")


def _regex_value(page: Page, *patterns) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(page.html)
        if match:
            value = clean_text(unescape_json_string(match.group(1)))
            if value:
                return value
    return None


def _labelled_value(page: Page, label: str) -> Optional[str]:
    """Value of a '<span>Label:</span><span>Value</span>' detail pair."""
    pattern = re.compile(
        rf"(?<![\w-]){label}{_LABEL_GAP}:{_LABEL_GAP}</span>\s*<span[^>]*>([^<]+)</span>",
        re.IGNORECASE,
    )
    match = pattern.search(page.html)
    if match:
        return clean_text(match.group(1)) or None
    return None


def _overview_value(page: Page, key: str) -> Optional[str]:
    """Value cell of the product-overview table row ``tr.po-<key>``."""
    return element_text(page.soup.select_one(f"tr.po-{key} td.a-span9"))


# Title

def title_from_product_title(page):
    return element_text(page.soup.select_one("#productTitle"))


def title_from_heading(page):
    node = page.soup.select_one("h1#title span") or page.soup.select_one("h1.product-title")
    return element_text(node)


def title_from_json_ld(page):
    for item in iter_json_ld(page):
        name = item.get("name")
        if isinstance(name, str) and name.strip():
            return clean_text(name)
    return None


# Price

_PRICE_TO_PAY_RE = re.compile(
    r"""priceToPay["']?\s*:\s*\{\s*["']?value["']?\s*:\s*"?(\d[\d,]*(?:\.\d+)?)"?"""
)
_PRICE_AMOUNT_RE = re.compile(r'"priceAmount"\s*:\s*"?(\d[\d,]*(?:\.\d+)?)"?')
_PRICE_PROPERTY_RE = re.compile(r'"price"\s*:\s*"?[£$€]?\s*(\d[\d,]*(?:\.\d+)?)"?')


def price_from_whole_and_fraction(page):
    for whole in page.soup.select(".a-price-whole"):
        fraction = whole.find_next_sibling(class_="a-price-fraction")
        if fraction is None:
            continue
        whole_digits = re.sub(r"\D", "", whole.get_text())
        fraction_digits = re.sub(r"\D", "", fraction.get_text())
        if whole_digits:
            return float(f"{whole_digits}.{fraction_digits or '0'}")
    return None


def price_from_single_value(page):
    for selector in (".a-price .a-offscreen", "#priceblock_ourprice", "#price_inside_buybox"):
        price = parse_price(element_text(page.soup.select_one(selector)))
        if price is not None:
            return price
    return None


def price_from_embedded_data(page):
    for pattern in (_PRICE_TO_PAY_RE, _PRICE_AMOUNT_RE, _PRICE_PROPERTY_RE):
        match = pattern.search(page.html)
        price = parse_price(match.group(1)) if match else None
        if price:
            return price
    return None


def price_from_deal_markup(page):
    for selector in (
        "#priceblock_dealprice",
        "#priceblock_saleprice",
        ".apexPriceToPay .a-offscreen",
        ".a-price-whole",
    ):
        price = parse_price(element_text(page.soup.select_one(selector)))
        if price is not None:
            return price
    return None


# Image

_HIRES_RE = re.compile(r'"hiRes"\s*:\s*"((?:https?:)?(?:\\?/){2}[^"]+)"')
_LARGE_RE = re.compile(r'"large"\s*:\s*"((?:https?:)?(?:\\?/){2}[^"]+)"')
_COLOR_IMAGES_RE = re.compile(r'"colorImages"\s*:\s*\{\s*"initial"\s*:\s*\[(.*?)\]', re.S)
_IMAGE_ENTRY_RE = re.compile(r'"(?:hiRes|large|mainUrl)"\s*:\s*"((?:https?:)?(?:\\?/){2}[^"]+)"')
_IMAGE_ID_RE = re.compile(r"/images/I/([^._/]+)")


def image_from_hires(page):
    match = _HIRES_RE.search(page.html)
    return match.group(1) if match else None


def image_from_large(page):
    match = _LARGE_RE.search(page.html)
    return match.group(1) if match else None


def image_from_landing_hires(page):
    node = page.soup.select_one("img#landingImage")
    return (node.get("data-old-hires") or None) if node else None


def image_from_img_src(page):
    for selector in ("img#landingImage", "img#imgBlkFront"):
        node = page.soup.select_one(selector)
        src = node.get("src") if node else None
        if src and not src.startswith("data:"):
            return src
    return None


def image_from_images_array(page):
    match = _COLOR_IMAGES_RE.search(page.html)
    if match:
        entry = _IMAGE_ENTRY_RE.search(match.group(1))
        if entry:
            return entry.group(1)

    # data-a-dynamic-image maps each rendition URL to its [width, height]
    node = page.soup.select_one("[data-a-dynamic-image]")
    if node is None:
        return None
    try:
        renditions = json.loads(node.get("data-a-dynamic-image") or "{}")
    except ValueError:
        return None
    if not isinstance(renditions, dict) or not renditions:
        return None

    def area(item):
        size = item[1]
        if isinstance(size, list) and len(size) == 2 and all(isinstance(n, (int, float)) for n in size):
            return size[0] * size[1]
        return 0

    return max(renditions.items(), key=area)[0]


def normalize_image_url(url: Optional[str]) -> Optional[str]:
    """Ask the image CDN for a fixed large rendition when the URL carries an image id."""
    url = upgrade_protocol(url)
    if not url:
        return None
    match = _IMAGE_ID_RE.search(url)
    if match:
        return IMAGE_URL_TEMPLATE.format(match.group(1))
    return url


# Description

def description_from_bullets(page):
    container = page.soup.select_one("#feature-bullets") or page.soup.select_one(
        "#featurebullets_feature_div"
    )
    if container is None:
        return None
    items = container.select("span.a-list-item") or container.select("li")
    bullets = [element_text(item) for item in items]
    bullets = [b for b in bullets if b and "see more" not in b.lower()]
    if not bullets:
        return None
    return " ".join(bullets)[:DESCRIPTION_MAX_LENGTH].rstrip()


def description_from_product_description(page):
    container = page.soup.select_one("#productDescription")
    if container is None:
        return None
    for paragraph in container.find_all("p"):
        text = element_text(paragraph)
        if text:
            return text[:DESCRIPTION_MAX_LENGTH].rstrip()
    return None


# Category

def category_from_breadcrumbs(page):
    for anchor in page.soup.select("#wayfinding-breadcrumbs_feature_div a"):
        text = element_text(anchor)
        if text:
            return text
    return None


def category_from_tertiary_link(page):
    return element_text(page.soup.select_one("a.a-link-normal.a-color-tertiary"))


# Brand

_STORE_LINK_RE = re.compile(r"Visit the\s+([^<]+?)\s+Store", re.IGNORECASE)
_BRAND_OBJECT_RE = re.compile(r'"brand"\s*:\s*\{[^{}]*?"name"\s*:\s*' + _JSON_STR, re.IGNORECASE)
_BRAND_STRING_RE = re.compile(r'"brand"\s*:\s*' + _JSON_STR, re.IGNORECASE)


def brand_from_store_link(page):
    match = _STORE_LINK_RE.search(page.html)
    return (clean_text(match.group(1)) or None) if match else None


def brand_from_byline(page):
    text = element_text(page.soup.select_one("a#bylineInfo"))
    if not text:
        return None
    return re.sub(r"^Brand\s*:\s*", "", text, flags=re.IGNORECASE) or None


def brand_from_label(page):
    return _labelled_value(page, "Brand") or _overview_value(page, "brand")


def brand_from_embedded_data(page):
    return _regex_value(page, _BRAND_OBJECT_RE, _BRAND_STRING_RE)


# Material

_MATERIAL_PROPERTY_RE = re.compile(r'"material"\s*:\s*' + _JSON_STR, re.IGNORECASE)


def material_from_label(page):
    return _labelled_value(page, "Material") or _overview_value(page, "material")


def material_from_type_label(page):
    return _labelled_value(page, "Material Type")


def material_from_embedded_data(page):
    return _regex_value(page, _MATERIAL_PROPERTY_RE)


# Colour

_COLOUR_PROPERTY_RE = re.compile(r'"colou?r"\s*:\s*' + _JSON_STR, re.IGNORECASE)


def colour_from_label(page):
    return _labelled_value(page, "Colou?r") or _overview_value(page, "color")


def colour_from_name_label(page):
    return _labelled_value(page, "Colou?r Name")


def colour_from_embedded_data(page):
    return _regex_value(page, _COLOUR_PROPERTY_RE)


def colour_from_selection(page):
    return element_text(page.soup.select_one("span.selection"))


# Rating

_OUT_OF_RE = re.compile(r"(\d+(?:\.\d+)?)\s+out of", re.IGNORECASE)
_RATING_VALUE_RE = re.compile(r'"ratingValue"\s*:\s*"?(\d+(?:\.\d+)?)"?', re.IGNORECASE)


def rating_from_accessible_label(page):
    for node in page.soup.select("span.a-icon-alt"):
        match = _OUT_OF_RE.search(node.get_text())
        if match:
            return float(match.group(1))
    return None


def rating_from_icon_label(page):
    for node in page.soup.select('i[class*="a-star"], [data-hook="rating-out-of-text"]'):
        text = node.get("title") or node.get_text(" ", strip=True)
        match = _OUT_OF_RE.search(text or "")
        if match:
            return float(match.group(1))
    return None


def rating_from_embedded_data(page):
    match = _RATING_VALUE_RE.search(page.html)
    return float(match.group(1)) if match else None


def validate_rating(value: float) -> Optional[float]:
    # Out-of-range ratings are unreliable, drop them rather than clamp
    return value if 0 <= value <= 5 else None


# Video

_IMAGE_BLOCK_RE = re.compile(r'"imageBlockData"\s*:\s*(\{.*?\})\s*,\s*"dimensionsDisplay"', re.S)
_VIDEOS_ARRAY_RE = re.compile(r'"videos"\s*:\s*\[\s*\{[^}]*?"url"\s*:\s*' + _JSON_STR, re.IGNORECASE)
_VIDEO_URL_RE = re.compile(r'"videoUrl"\s*:\s*' + _JSON_STR, re.IGNORECASE)
_VIDEO_OBJECT_RE = re.compile(r'"video"\s*:\s*\{\s*"url"\s*:\s*' + _JSON_STR, re.IGNORECASE)


def video_from_image_block(page):
    match = _IMAGE_BLOCK_RE.search(page.html)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return None
    videos = data.get("videos") if isinstance(data, dict) else None
    if isinstance(videos, list) and videos and isinstance(videos[0], dict):
        for key in ("url", "videoUrl"):
            value = videos[0].get(key)
            if value and isinstance(value, str):
                return value
    return None


def video_from_videos_array(page):
    match = _VIDEOS_ARRAY_RE.search(page.html)
    return match.group(1) if match else None


def video_from_url_property(page):
    for pattern in (_VIDEO_URL_RE, _VIDEO_OBJECT_RE):
        match = pattern.search(page.html)
        if match:
            return match.group(1)
    return None


def video_from_inline_attribute(page):
    node = page.soup.select_one("[data-video-url]")
    return (node.get("data-video-url") or None) if node else None


class FieldCascade(NamedTuple):
    name: str
    strategies: Tuple[Strategy, ...]
    finalize: Optional[Callable[[Any], Any]] = None

    def extract(self, page: Page) -> Any:
        value = first_match(self.strategies, page)
        if value is not None and self.finalize is not None:
            value = self.finalize(value)
        return value


FIELD_CASCADES = (
    FieldCascade("title", (title_from_product_title, title_from_heading, title_from_json_ld)),
    FieldCascade(
        "price",
        (
            price_from_whole_and_fraction,
            price_from_single_value,
            price_from_embedded_data,
            price_from_deal_markup,
        ),
    ),
    FieldCascade(
        "image_url",
        (
            image_from_hires,
            image_from_large,
            image_from_landing_hires,
            image_from_img_src,
            image_from_images_array,
        ),
        normalize_image_url,
    ),
    FieldCascade("description", (description_from_bullets, description_from_product_description)),
    FieldCascade("category", (category_from_breadcrumbs, category_from_tertiary_link)),
    FieldCascade(
        "brand",
        (brand_from_store_link, brand_from_byline, brand_from_label, brand_from_embedded_data),
    ),
    FieldCascade(
        "material", (material_from_label, material_from_type_label, material_from_embedded_data)
    ),
    FieldCascade(
        "colour",
        (colour_from_label, colour_from_name_label, colour_from_embedded_data, colour_from_selection),
    ),
    FieldCascade(
        "rating",
        (rating_from_accessible_label, rating_from_icon_label, rating_from_embedded_data),
        validate_rating,
    ),
    FieldCascade(
        "video_url",
        (
            video_from_image_block,
            video_from_videos_array,
            video_from_url_property,
            video_from_inline_attribute,
        ),
        upgrade_protocol,
    ),
)


def extract_product_fields(
    html: str,
    pause: Optional[Callable[[], None]] = None,
    cascades: Sequence[FieldCascade] = FIELD_CASCADES,
) -> Dict[str, Any]:
    """Run every field cascade over ``html``, one field at a time.

    ``pause`` is called between fields (the service passes a short random
    sleep). Fields no strategy could match are ``None``.
    """
    page = Page(html)
    fields = {}
    for index, cascade in enumerate(cascades):
        if index and pause is not None:
            pause()
        fields[cascade.name] = cascade.extract(page)
    return fields
