"""Feed parsing, page fetching and article extraction."""

from .feed_parser import (
    FeedLinkDiscoverer,
    FeedParser,
    HtmlFeedLinkDiscoverer,
    ParsedFeed,
    sort_entries,
)
from .http_fetcher import FetchedPage, HttpFetcher, classify_mime_type, is_html_mime_type
from .metadata import MetadataExtractor
from .readability import ReadabilityExtractor, compute_content_hash, is_probably_readable

__all__ = [
    "FeedLinkDiscoverer",
    "FeedParser",
    "FetchedPage",
    "HtmlFeedLinkDiscoverer",
    "HttpFetcher",
    "MetadataExtractor",
    "ParsedFeed",
    "ReadabilityExtractor",
    "classify_mime_type",
    "compute_content_hash",
    "is_html_mime_type",
    "is_probably_readable",
    "sort_entries",
]
