"""Handshake message sent by clients to bind their connection to a session.

Wire format (JSON object):
    {"type": "handshake", "session": "abc-123"}

``type`` is informational. ``session`` is the routing key and is
required. Unknown fields are ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationInfo, field_validator


class Handshake(BaseModel):
    """Client handshake binding a connection to a session."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: StrictStr = ""
    session: StrictStr = Field(min_length=1)
    party: bool = Field(default=False, alias="_party")

    @field_validator("type", "party", mode="before")
    @classmethod
    def null_as_default(cls, value: Any, info: ValidationInfo) -> Any:
        """Treat null informational fields as absent."""
        if value is None:
            return cls.model_fields[info.field_name].default
        return value
