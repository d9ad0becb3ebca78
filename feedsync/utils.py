"""Small helpers shared across the pipeline."""

from typing import Iterator, List, Optional, Sequence, TypeVar
from urllib.parse import urlparse

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

T = TypeVar("T")

_http_url = TypeAdapter(AnyHttpUrl)


def is_valid_link(link: Optional[str]) -> bool:
    """Check that a link is an absolute http(s) URL."""
    if not link or not isinstance(link, str):
        return False
    try:
        _http_url.validate_python(link)
    except PydanticValidationError:
        return False
    return True


def site_name_from_link(link: str) -> str:
    """Derive a display site name from a URL host."""
    host = urlparse(link).hostname or ""
    return host.replace("www.", "", 1)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
