"""Base model classes shared by the pipeline models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Model serialized with camelCase keys for the cache and queue."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """Dump to a JSON-compatible dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)

    def to_wire_json(self) -> str:
        """Dump to a JSON string using wire (camelCase) keys."""
        return self.model_dump_json(by_alias=True)


class DBModel(WireModel):
    """Base model for rows owned by the persistence layer."""

    id: Optional[str] = Field(None, description="Primary key")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
