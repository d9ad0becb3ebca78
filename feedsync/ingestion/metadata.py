"""Article metadata from meta tags and JSON-LD."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..errors import ExtractionError
from ..result import Err, Ok, Result
from ..utils import is_valid_link

logger = logging.getLogger(__name__)


@dataclass
class PageMetadata:
    """Raw metadata collected from a document."""

    tags: Dict[str, str] = field(default_factory=dict)
    jsonld: List[Dict[str, Any]] = field(default_factory=list)
    headings: List[Tuple[str, str]] = field(default_factory=list)

    def get(self, key: str) -> Optional[str]:
        return self.tags.get(key)


def _flatten_jsonld(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        blocks = []
        for item in data:
            blocks.extend(_flatten_jsonld(item))
        return blocks
    if isinstance(data, dict):
        if "@graph" in data and isinstance(data["@graph"], list):
            return _flatten_jsonld(data["@graph"])
        return [data]
    return []


def collect_page_metadata(html: str) -> PageMetadata:
    """Collect meta tags, JSON-LD blocks and headings of a page."""
    soup = BeautifulSoup(html or "", "lxml")
    page = PageMetadata()

    title_tag = soup.find("title")
    if title_tag and title_tag.get_text(strip=True):
        page.tags["title"] = title_tag.get_text(strip=True)

    for meta in soup.find_all("meta"):
        key = meta.get("property") or meta.get("name") or meta.get("itemprop")
        content = meta.get("content")
        if not key or content is None:
            continue
        key = key.strip().lower()
        content = content.strip()
        if content and key not in page.tags:
            page.tags[key] = content
        elif content and key == "title":
            # <meta name="title"> overrides the <title> element
            page.tags[key] = content

    image_src = soup.find("link", rel="image_src", href=True)
    if image_src and "image" not in page.tags:
        page.tags["image"] = image_src["href"].strip()

    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            page.jsonld.extend(_flatten_jsonld(json.loads(raw)))
        except ValueError:
            logger.debug("Skipping invalid JSON-LD block")

    for heading in soup.find_all(["h1", "h2", "h3"]):
        text = heading.get_text(" ", strip=True)
        if text:
            page.headings.append((heading.name, text))

    return page


def is_news_article(data: Any) -> bool:
    """Check if the given JSON-LD block is a NewsArticle with a headline."""
    if not isinstance(data, dict):
        return False
    types = data.get("@type")
    if isinstance(types, list):
        is_type = "NewsArticle" in types
    else:
        is_type = types == "NewsArticle"
    return is_type and isinstance(data.get("headline"), str)


def _first_string(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("name") if isinstance(value.get("name"), str) else None
    if isinstance(value, list):
        for item in value:
            name = _name_of(item)
            if name:
                return name
    return None


def _url_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("url") if isinstance(value.get("url"), str) else None
    if isinstance(value, list):
        for item in value:
            url = _url_of(item)
            if url:
                return url
    return None


def _primary_jsonld(page: PageMetadata) -> Optional[Dict[str, Any]]:
    if not page.jsonld:
        return None
    if is_news_article(page.jsonld[0]):
        return page.jsonld[0]
    for block in page.jsonld:
        if is_news_article(block):
            return block
    return page.jsonld[0]


def _jsonld_value(page: PageMetadata, extract) -> Optional[str]:
    primary = _primary_jsonld(page)
    if primary is not None:
        value = extract(primary)
        if value:
            return value
    for block in page.jsonld:
        value = extract(block)
        if value:
            return value
    return None


def normalize_image_url(image: Optional[str], domain: Optional[str]) -> Optional[str]:
    """Absolute, single, syntactically valid image URL or None."""
    if not image:
        return None

    image = image.strip()
    if not image.startswith("http") and domain:
        image = urljoin(f"https://{domain}", image)

    # Some sites put several comma separated URLs in one tag
    if "," in image:
        image = image.split(",", 1)[0].strip()

    return image if is_valid_link(image) else None


def derive_article_metadata(page: PageMetadata, domain: Optional[str]) -> Dict[str, Any]:
    """Resolve each field through its priority chain."""
    h1 = next((text for level, text in page.headings if level == "h1"), None)

    title = _first_string(
        page.get("title"),
        page.get("og:title"),
        page.get("twitter:title"),
        _jsonld_value(page, lambda block: _first_string(block.get("headline"))),
        h1,
    )

    description = _first_string(
        page.get("description"),
        page.get("og:description"),
        page.get("twitter:description"),
        _jsonld_value(page, lambda block: _first_string(block.get("description"))),
    )

    author = _first_string(
        page.get("author"),
        page.get("og:author"),
        page.get("article:author"),
        _jsonld_value(page, lambda block: _name_of(block.get("author"))),
        _jsonld_value(page, lambda block: _name_of(block.get("publisher"))),
        page.get("twitter:creator"),
    )

    image = _first_string(
        page.get("image"),
        page.get("og:image"),
        page.get("twitter:image"),
        page.get("twitter:image:src"),
        page.get("og:image:secure_url"),
        _jsonld_value(page, lambda block: _url_of(block.get("image"))),
    )

    site_name = _first_string(
        page.get("og:site_name"),
        page.get("application-name"),
        _jsonld_value(page, lambda block: _name_of(block.get("publisher"))),
    )

    published_at = _first_string(
        page.get("article:published_time"),
        _jsonld_value(page, lambda block: _first_string(block.get("datePublished"))),
    )

    return {
        "title": title,
        "description": description,
        "author": author,
        "image": normalize_image_url(image, domain),
        "site_name": site_name,
        "published_at": published_at,
    }


class MetadataExtractor:
    """Extract structured metadata from an article page."""

    def extract(
        self, html: str, link: str, title: Optional[str] = None
    ) -> Result[Dict[str, Any], ExtractionError]:
        """Partial metadata for ``link``; ``title`` hints the feed's own title."""
        try:
            page = collect_page_metadata(html)
            metadata = derive_article_metadata(page, urlparse(link).hostname)
        except Exception as e:
            logger.warning("Metadata extraction failed for %s: %s", link, e)
            return Err(ExtractionError(link, f"Metadata extraction failed: {e}"))

        if title:
            metadata["title"] = title
        return Ok(metadata)
