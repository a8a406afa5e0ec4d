"""Shared Pydantic base models for the dashboard wire format."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireBase(BaseModel):
    """Base model for every body exchanged with the dashboard.

    Fields are snake_case in Python and camelCase on the wire; either name
    is accepted when parsing.  ``from_attributes`` lets a model validate
    straight from a domain dataclass.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
