"""
Common primitives shared by issue and patch records.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, constr
from ulid import ULID

# Issues carry client-generated string ids, patches machine-assigned integers.
ArtifactId = Union[StrictInt, constr(min_length=1, max_length=128)]

HexKey = constr(pattern=r"^[0-9a-f]{64}$")


def generate_ulid() -> str:
    """Generate a ULID, used by clients for fresh issue ids."""
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Record(BaseModel):
    """Base for everything stored in the entity store.

    Records are frozen: an update always replaces the whole value. Extra
    fields are allowed so upgrades can migrate the stored shape.
    """

    model_config = ConfigDict(frozen=True, extra="allow")


class Comment(BaseModel):
    """A comment owned by exactly one issue or patch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    author: constr(min_length=1, max_length=256) = Field(
        ..., description="Public key or display name of the commenter"
    )
    body: constr(min_length=1, max_length=16000) = Field(
        ..., description="Comment text"
    )
    created_at: datetime = Field(..., description="Timestamp of the command")
