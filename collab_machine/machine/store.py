"""
Entity store: the machine's mutable artifact state.

A mapping from artifact id to record, kept in insertion order. Records are
frozen models, so a shallow copy of the mapping is a complete checkpoint.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from .enums import ArtifactKind
from .errors import IdentifierConflict, NotFound
from .primitives import ArtifactId, Record


class EntityStore:
    """Insertion-ordered artifact records with a patch id counter."""

    def __init__(
        self,
        records: Optional[Dict[ArtifactId, Record]] = None,
        last_patch_id: int = 0,
    ):
        self._records: Dict[ArtifactId, Record] = dict(records or {})
        self._last_patch_id = last_patch_id

    def insert(self, artifact_id: ArtifactId, record: Record) -> None:
        if artifact_id in self._records:
            raise IdentifierConflict(f"Identifier '{artifact_id}' is already taken")
        self._records[artifact_id] = record

    def lookup(self, artifact_id: ArtifactId) -> Record:
        try:
            return self._records[artifact_id]
        except KeyError:
            raise NotFound("Artifact", artifact_id) from None

    def delete(self, artifact_id: ArtifactId) -> None:
        if artifact_id not in self._records:
            raise NotFound("Artifact", artifact_id)
        del self._records[artifact_id]

    def update(self, artifact_id: ArtifactId, fn: Callable[[Record], Record]) -> Record:
        """Replace a record with ``fn(record)``; the old value is never touched."""
        new_record = fn(self.lookup(artifact_id))
        self._records[artifact_id] = new_record
        return new_record

    def list(self, kind: Optional[ArtifactKind] = None) -> List[Tuple[ArtifactId, Record]]:
        """(id, record) pairs in insertion order."""
        if kind is None:
            return list(self._records.items())
        wanted = ArtifactKind(kind).value
        return [(key, rec) for key, rec in self._records.items() if getattr(rec, "kind", None) == wanted]

    def replace_all(self, records: Dict[ArtifactId, Record]) -> None:
        """Swap in a migrated record set, preserving its order."""
        self._records = dict(records)

    def next_patch_id(self) -> int:
        self._last_patch_id += 1
        return self._last_patch_id

    @property
    def last_patch_id(self) -> int:
        return self._last_patch_id

    def copy(self) -> "EntityStore":
        return EntityStore(self._records, self._last_patch_id)

    def dump(self) -> List[Dict[str, Any]]:
        """JSON-compatible dump of every record, in order."""
        return [record.model_dump(mode="json") for record in self._records.values()]

    def __contains__(self, artifact_id: object) -> bool:
        return artifact_id in self._records

    def __len__(self) -> int:
        return len(self._records)
