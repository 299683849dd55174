"""
Machine state and the per-command context handed to handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import UnknownCommand
from .identity import IdentityRegistry
from .store import EntityStore

Handler = Callable[["MachineState", Any, "CommandContext"], Any]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CommandTable:
    """Mutable mapping from command name to handler.

    Only the upgrade gate installs or removes entries.
    """

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self._handlers: Dict[str, Handler] = dict(handlers or {})

    def get(self, name: str) -> Handler:
        try:
            return self._handlers[name]
        except KeyError:
            raise UnknownCommand(name) from None

    def install(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def remove(self, name: str) -> None:
        if name not in self._handlers:
            raise UnknownCommand(name)
        del self._handlers[name]

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def copy(self) -> "CommandTable":
        return CommandTable(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


@dataclass
class MachineState:
    """Everything a command can change."""

    store: EntityStore = field(default_factory=EntityStore)
    identities: IdentityRegistry = field(default_factory=IdentityRegistry)
    commands: CommandTable = field(default_factory=CommandTable)
    schema_version: int = 0
    # Timestamp of the last applied command; stamps entries that carry none.
    clock: datetime = EPOCH

    def checkpoint(self) -> "MachineState":
        """Copy of the state taken before every command.

        Records are immutable and shared with the copy, so the cost is one
        copy of each mapping: linear in the number of records and identities.
        """
        return MachineState(
            store=self.store.copy(),
            identities=self.identities.copy(),
            commands=self.commands.copy(),
            schema_version=self.schema_version,
            clock=self.clock,
        )

    def restore(self, checkpoint: "MachineState") -> None:
        self.store = checkpoint.store
        self.identities = checkpoint.identities
        self.commands = checkpoint.commands
        self.schema_version = checkpoint.schema_version
        self.clock = checkpoint.clock


@dataclass(frozen=True)
class Effect:
    """A side effect to run after the handler, before the state is released."""

    name: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CommandContext:
    """Caller context for a single command application."""

    caller: Optional[str]
    timestamp: datetime
    machine_id: str
    maintainer: str
    close_issue_policy: str = "author_or_maintainer"
    effects: List[Effect] = field(default_factory=list)

    def queue_effect(self, name: str, **params: Any) -> None:
        self.effects.append(Effect(name=name, params=params))

    @property
    def is_maintainer(self) -> bool:
        return bool(self.maintainer) and self.caller == self.maintainer
