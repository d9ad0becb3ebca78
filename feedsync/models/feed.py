"""Feed model for subscribed RSS/Atom sources."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from .base import DBModel

FeedType = Literal["rss", "atom"]


class Feed(DBModel):
    """Subscribed feed."""

    id: str = Field(..., description="Primary key")
    name: str = Field(..., description="Feed name")
    link: str = Field(..., description="Canonical feed URL, globally unique")
    type: Optional[FeedType] = Field(None, description="Feed format")
    synced_at: Optional[datetime] = Field(None, description="Last time the feed was scheduled")
