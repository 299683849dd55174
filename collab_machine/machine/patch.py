"""
Patch schema.

A patch carries an opaque diff for the git collaborator and moves through
the lifecycle in lifecycle.py. Its id is assigned by the machine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, constr

from .enums import PatchState
from .primitives import Comment, Record


class Patch(Record):
    """A proposed change and its review state."""

    kind: Literal["patch"] = Field(default="patch", description="Record kind")
    id: StrictInt = Field(..., ge=1, description="Machine-assigned identifier")
    author: constr(min_length=1, max_length=256) = Field(
        ..., description="Identity that submitted the patch"
    )
    title: constr(min_length=1, max_length=512) = Field(..., description="Patch title")
    body: constr(max_length=16000) = Field("", description="Patch description")
    diff: str = Field(..., description="Opaque diff consumed by the git collaborator")
    commit: constr(pattern=r"^[0-9a-f]{4,40}$") = Field(
        ..., description="Short hash of the source commit"
    )
    state: PatchState = Field(PatchState.PENDING, description="Lifecycle state")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    modified_at: datetime = Field(..., description="Last state change (UTC)")
    comments: Tuple[Comment, ...] = Field(default=(), description="Ordered comments")


class PatchCreate(BaseModel):
    """Arguments of the create-patch command."""

    model_config = ConfigDict(extra="forbid")

    title: constr(min_length=1, max_length=512)
    body: constr(max_length=16000) = ""
    diff: str
    commit: constr(pattern=r"^[0-9a-f]{4,40}$")


class PatchEdit(BaseModel):
    """Arguments of the edit-patch command.

    ``fields`` is checked against lifecycle.EDITABLE_FIELDS by the handler.
    """

    model_config = ConfigDict(extra="forbid")

    id: StrictInt
    fields: Dict[str, Any] = Field(..., min_length=1)
