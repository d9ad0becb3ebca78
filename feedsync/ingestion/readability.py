"""Reader-mode extraction: sanitize, classify, extract, hash."""

import asyncio
import hashlib
import logging
import math
import re
from typing import Optional, Union
from urllib.parse import urljoin

import pendulum
from bs4 import BeautifulSoup
from lxml import html as lxml_html
from readability import Document
from trafilatura.metadata import extract_metadata

from ..errors import ExtractionError
from ..models import NotReadable, NotReadableType, ReadableArticle
from ..result import Err, Ok, Result
from ..utils import site_name_from_link

logger = logging.getLogger(__name__)

STRIPPED_TAGS = ("script", "style", "title", "noscript", "iframe")
STRIPPED_ATTRIBUTES = ("style", "class")

UNLIKELY_CANDIDATES = re.compile(
    r"-ad-|ai2html|banner|breadcrumbs|combx|comment|community|cover-wrap|disqus|extra|"
    r"footer|gdpr|header|legends|menu|related|remark|replies|rss|shoutbox|sidebar|"
    r"skyscraper|social|sponsor|supplemental|ad-break|agegate|pagination|pager|popup|"
    r"yom-remote",
    re.IGNORECASE,
)
MAYBE_CANDIDATE = re.compile(r"and|article|body|column|content|main|shadow", re.IGNORECASE)

EXCERPT_LENGTH = 200

ExtractionOutcome = Union[ReadableArticle, NotReadableType]


def sanitize(html: str) -> BeautifulSoup:
    """Parse HTML and drop non-content tags and presentation attributes."""
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup.find_all(STRIPPED_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        for attribute in STRIPPED_ATTRIBUTES:
            if attribute in tag.attrs:
                del tag.attrs[attribute]
    return soup


def sanitize_html(html: str) -> str:
    """Sanitized markup as a string."""
    return str(sanitize(html))


def _is_visible(node) -> bool:
    if node.has_attr("hidden"):
        return False
    if (node.get("aria-hidden") or "").lower() == "true":
        return False
    return "display:none" not in (node.get("style") or "").replace(" ", "")


def _score_readability(soup: BeautifulSoup, min_content_length: int, min_score: float) -> bool:
    nodes = list(soup.select("p, pre, article"))
    seen = {id(node) for node in nodes}
    for br in soup.select("div > br"):
        parent = br.parent
        if id(parent) not in seen:
            seen.add(id(parent))
            nodes.append(parent)

    score = 0.0
    for node in nodes:
        if not _is_visible(node):
            continue

        match_string = " ".join(node.get("class") or []) + " " + (node.get("id") or "")
        if UNLIKELY_CANDIDATES.search(match_string) and not MAYBE_CANDIDATE.search(
            match_string
        ):
            continue

        if node.name == "p" and node.find_parent("li") is not None:
            continue

        text_length = len(node.get_text().strip())
        if text_length < min_content_length:
            continue

        score += math.sqrt(text_length - min_content_length)
        if score > min_score:
            return True

    return False


def is_probably_readable(
    html: Union[str, BeautifulSoup],
    min_content_length: int = 140,
    min_score: float = 20.0,
) -> bool:
    """Heuristic check that a page holds an article; never raises."""
    try:
        soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html or "", "lxml")
        return _score_readability(soup, min_content_length, min_score)
    except Exception as e:
        logger.debug("Readability check failed: %s", e)
        return False


def absolutize_images(soup: BeautifulSoup, base_url: str) -> None:
    """Rewrite relative ``<img src>`` values against the article link."""
    for img in soup.find_all("img", src=True):
        src = img["src"].strip()
        if src and not src.startswith("http"):
            img["src"] = urljoin(base_url, src)


def normalize_text(text: str) -> str:
    """Normalize text for hashing."""
    # Remove extra whitespace and normalize line endings
    lines = [" ".join(line.split()) for line in text.splitlines() if line.strip()]
    return "\n".join(lines).lower()


def compute_content_hash(text: str) -> str:
    """Compact hash of normalized text, stable across re-fetches."""
    normalized = normalize_text(text)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def _make_excerpt(description: Optional[str], text_content: str) -> str:
    if description:
        return description.strip()[:EXCERPT_LENGTH]
    for paragraph in text_content.split("\n"):
        if paragraph.strip():
            return paragraph.strip()[:EXCERPT_LENGTH]
    return ""


class ReadabilityExtractor:
    """Derive a ReadableArticle from fetched HTML."""

    def __init__(
        self,
        min_content_length: int = 140,
        min_score: float = 20.0,
        run_in_thread: bool = True,
    ) -> None:
        """Initialize extractor."""
        self.min_content_length = min_content_length
        self.min_score = min_score
        self.run_in_thread = run_in_thread

    def is_readable(self, html: str) -> bool:
        """Sanitize and classify a page."""
        try:
            soup = sanitize(html)
        except Exception as e:
            logger.debug("Could not sanitize page: %s", e)
            return False
        return is_probably_readable(soup, self.min_content_length, self.min_score)

    def extract_sync(self, url: str, html: str) -> ExtractionOutcome:
        """Blocking extraction; raises on DOM failures."""
        soup = sanitize(html)

        if not is_probably_readable(soup, self.min_content_length, self.min_score):
            return NotReadable

        absolutize_images(soup, url)

        document = Document(str(soup), url=url)
        content = document.summary(html_partial=True)
        text_content = "\n".join(
            line.strip()
            for line in lxml_html.fromstring(content).text_content().splitlines()
            if line.strip()
        )
        if not text_content:
            return NotReadable

        # Metadata comes from the raw page: sanitizing drops <title>
        metadata = extract_metadata(html, default_url=url)

        title = metadata.title if metadata and metadata.title else None
        if not title:
            heading = soup.find("h1")
            title = heading.get_text(strip=True) if heading else "Untitled"

        root = soup.find("html")

        return ReadableArticle(
            title=title,
            content=content,
            text_content=text_content,
            length=len(text_content),
            excerpt=_make_excerpt(metadata.description if metadata else None, text_content),
            byline=(metadata.author if metadata else None) or "",
            dir=(root.get("dir") if root else None) or "",
            lang=(root.get("lang") if root else None) or "",
            site_name=(metadata.sitename if metadata else None) or site_name_from_link(url),
            published_time=(metadata.date if metadata else None) or "",
            content_hash=compute_content_hash(text_content),
            created_at=pendulum.now("UTC"),
        )

    async def extract(self, url: str, html: str) -> Result[ExtractionOutcome, ExtractionError]:
        """Extract a readable article, ``NotReadable``, or an ``ExtractionError``."""
        try:
            if self.run_in_thread:
                outcome = await asyncio.to_thread(self.extract_sync, url, html)
            else:
                outcome = self.extract_sync(url, html)
        except Exception as e:
            logger.warning("Readable extraction failed for %s: %s", url, e)
            return Err(ExtractionError(url, f"Readable extraction failed: {e}"))

        return Ok(outcome)
