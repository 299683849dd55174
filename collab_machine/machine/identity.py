"""
Identity registry.

An append-only list of (name, public key) pairs. Both fields are unique
across all entries. Artifact authoring does not consult the registry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr

from .errors import IdentifierConflict, NotFound
from .primitives import HexKey


class Identity(BaseModel):
    """A registered identity."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: constr(min_length=1, max_length=128) = Field(..., description="Display name")
    public_key: HexKey = Field(..., description="Hex Ed25519 public key")
    registered_at: datetime = Field(..., description="Registration timestamp (UTC)")


class IdentityCreate(BaseModel):
    """Arguments of the register command."""

    model_config = ConfigDict(extra="forbid")

    name: constr(min_length=1, max_length=128)
    public_key: HexKey


class IdentityRegistry:
    """Registry with unique names and unique keys."""

    def __init__(self, entries: Optional[List[Identity]] = None):
        self._by_name: Dict[str, Identity] = {}
        self._by_key: Dict[str, Identity] = {}
        for entry in entries or []:
            self._add(entry)

    def _add(self, entry: Identity) -> None:
        self._by_name[entry.name] = entry
        self._by_key[entry.public_key] = entry

    def register(self, name: str, public_key: str, registered_at: datetime) -> Identity:
        """Append a new identity; raises IdentifierConflict on any reuse."""
        if name in self._by_name:
            raise IdentifierConflict(f"Identity name '{name}' is already registered")
        if public_key in self._by_key:
            raise IdentifierConflict(
                f"Public key '{public_key[:12]}...' is already registered as "
                f"'{self._by_key[public_key].name}'"
            )
        entry = Identity(name=name, public_key=public_key, registered_at=registered_at)
        self._add(entry)
        return entry

    def by_name(self, name: str) -> Identity:
        try:
            return self._by_name[name]
        except KeyError:
            raise NotFound("Identity", name) from None

    def by_key(self, public_key: str) -> Identity:
        try:
            return self._by_key[public_key]
        except KeyError:
            raise NotFound("Identity", public_key) from None

    def list(self) -> List[Identity]:
        """Entries in registration order."""
        return list(self._by_name.values())

    def copy(self) -> "IdentityRegistry":
        return IdentityRegistry(self.list())

    def __len__(self) -> int:
        return len(self._by_name)
