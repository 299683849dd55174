"""
Canonical enums for machine records.
"""

from enum import Enum


class ArtifactKind(str, Enum):
    """Kinds of records held in the entity store."""

    ISSUE = "issue"
    PATCH = "patch"


class PatchState(str, Enum):
    """Lifecycle states of a patch."""

    PENDING = "pending"
    RETRACTED = "retracted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Role(str, Enum):
    """Roles a caller can hold with respect to an artifact."""

    AUTHOR = "author"
    MAINTAINER = "maintainer"
