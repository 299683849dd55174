"""
Issue schema.

An issue is accepted into the store only if its signature verifies over the
canonical message built from its own fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, constr

from .primitives import Comment, HexKey, Record


class Issue(Record):
    """A signed issue and its discussion."""

    kind: Literal["issue"] = Field(default="issue", description="Record kind")
    id: constr(min_length=1, max_length=128) = Field(
        ..., description="Client-generated identifier"
    )
    author: HexKey = Field(..., description="Hex Ed25519 public key of the author")
    title: constr(min_length=1, max_length=512) = Field(..., description="Issue title")
    body: constr(max_length=16000) = Field("", description="Issue body")
    signature: constr(pattern=r"^[0-9a-f]{128}$") = Field(
        ..., description="Hex Ed25519 signature over the canonical message"
    )
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    comments: Tuple[Comment, ...] = Field(default=(), description="Ordered comments")


class IssueCreate(BaseModel):
    """Arguments of the create-issue command."""

    model_config = ConfigDict(extra="forbid")

    id: constr(min_length=1, max_length=128)
    author: HexKey
    title: constr(min_length=1, max_length=512)
    body: constr(max_length=16000) = ""
    signature: constr(min_length=1, max_length=256)


class IssueClose(BaseModel):
    """Arguments of the close-issue command."""

    model_config = ConfigDict(extra="forbid")

    id: constr(min_length=1, max_length=128)
