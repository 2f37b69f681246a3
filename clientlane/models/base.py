"""
clientlane/models/base.py

Shared base for API-facing models: frozen, camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Immutable model that serialises with camelCase keys."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_api(self, exclude_none: bool = False) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)
