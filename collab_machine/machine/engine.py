"""
Dispatch engine.

Applies one command at a time from the externally ordered log:

    update        -> runtime-upgrade gate (bypasses the command table)
    anything else -> command table lookup -> handler

Every command runs against a checkpoint of the machine state. A failure of
the handler, or of a side effect queued by it, restores the checkpoint, so a
command either fully applies or leaves no trace. Faults never escape
process(); they come back as failed CommandResults and the engine keeps
serving the log.

The engine never reads the clock. Records are stamped with the entry's
timestamp, or with the last applied one when the entry carries none.
"""

from __future__ import annotations

import hashlib
import json
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, constr

from ..config import Settings, get_settings
from ..git import GitCollaborator, merge_patch
from .enums import ArtifactKind, PatchState
from .errors import HandlerFault, InvalidArguments, MachineError, MergeFailure, UpgradeFailure
from .identity import Identity
from .patch import Patch
from .primitives import ArtifactId, Record
from .state import EPOCH, CommandContext, MachineState
from .upgrade import UPGRADE_COMMAND, apply_upgrade, authorize_upgrade, bootstrap_upgrade

logger = structlog.get_logger()

# Bootstrap runs before any log entry; its timestamp is fixed so replicas agree.
BOOTSTRAP_TIMESTAMP = EPOCH


class Command(BaseModel):
    """One entry of the replicated log."""

    model_config = ConfigDict(extra="forbid")

    command: constr(min_length=1, max_length=128) = Field(..., description="Command name")
    args: Any = Field(default_factory=dict, description="Command arguments")
    caller: Optional[constr(min_length=1, max_length=256)] = Field(
        None, description="Identity submitting the command"
    )
    timestamp: Optional[datetime] = Field(
        None,
        description="Submission time, stamped on created records. "
        "Entries without one reuse the last applied timestamp.",
    )


class CommandResult(BaseModel):
    """Observable outcome of applying a command."""

    ok: bool
    command: str
    value: Any = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, command: str, value: Any) -> "CommandResult":
        return cls(ok=True, command=command, value=value)

    @classmethod
    def failure(cls, command: str, error: MachineError) -> "CommandResult":
        return cls(ok=False, command=command, error=error.to_dict())

    @property
    def code(self) -> Optional[str]:
        return self.error["code"] if self.error else None


class Machine:
    """
    The replicated state machine.

    The machine owns its state exclusively; a lock serializes writers so
    only one command is ever applied at a time. Each command pays for a
    checkpoint, a copy of the store and registry mappings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        git: Optional[GitCollaborator] = None,
        state: Optional[MachineState] = None,
    ):
        self.settings = settings or get_settings()
        self.git = git
        self.state = state or MachineState()
        self._lock = threading.Lock()
        self._effects = {"merge": self._merge}

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    def process(
        self,
        command_name: str,
        args: Any = None,
        caller: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> CommandResult:
        """Apply a single command given by name and arguments."""
        try:
            command = Command(
                command=command_name,
                args={} if args is None else args,
                caller=caller,
                timestamp=timestamp,
            )
        except ValidationError as exc:
            return CommandResult.failure(
                str(command_name), InvalidArguments(f"Malformed command: {exc.error_count()} error(s)")
            )
        return self.apply(command)

    def apply(self, command: Command) -> CommandResult:
        """Apply a command envelope from the log."""
        return self._apply(command, system=False)

    def bootstrap(self) -> CommandResult:
        """Install the default command set through the upgrade gate."""
        command = Command(command=UPGRADE_COMMAND, args=bootstrap_upgrade(), timestamp=BOOTSTRAP_TIMESTAMP)
        return self._apply(command, system=True)

    def replay(self, commands: Iterable[Union[Command, Dict[str, Any]]]) -> List[CommandResult]:
        """Apply a sequence of log entries in order."""
        results = []
        for entry in commands:
            if isinstance(entry, Command):
                results.append(self.apply(entry))
                continue
            try:
                command = Command.model_validate(entry)
            except ValidationError as exc:
                name = entry.get("command", "") if isinstance(entry, dict) else ""
                results.append(
                    CommandResult.failure(
                        str(name), InvalidArguments(f"Malformed log entry: {exc.error_count()} error(s)")
                    )
                )
                continue
            results.append(self.apply(command))
        return results

    def _context(self, command: Command) -> CommandContext:
        return CommandContext(
            caller=command.caller,
            timestamp=command.timestamp or self.state.clock,
            machine_id=self.settings.machine_id,
            maintainer=self.settings.maintainer,
            close_issue_policy=self.settings.close_issue_policy,
        )

    def _apply(self, command: Command, system: bool) -> CommandResult:
        log = logger.bind(command=command.command, caller=command.caller)
        with self._lock:
            checkpoint = self.state.checkpoint()
            ctx = self._context(command)
            try:
                if command.command == UPGRADE_COMMAND:
                    value = self._upgrade(command, system)
                else:
                    handler = self.state.commands.get(command.command)
                    value = handler(self.state, command.args, ctx)
                for effect in ctx.effects:
                    self._effects[effect.name](**effect.params)
                self.state.clock = ctx.timestamp
            except MachineError as exc:
                self.state.restore(checkpoint)
                log.warning("command_failed", code=exc.code, message=exc.message)
                return CommandResult.failure(command.command, exc)
            except Exception as exc:
                self.state.restore(checkpoint)
                log.exception("command_fault")
                detail = f"{type(exc).__name__}: {exc}"
                fault = UpgradeFailure(detail) if command.command == UPGRADE_COMMAND else HandlerFault(detail)
                return CommandResult.failure(command.command, fault)

        log.info("command_applied", effects=[effect.name for effect in ctx.effects])
        return CommandResult.success(command.command, value)

    def _upgrade(self, command: Command, system: bool) -> Dict[str, Any]:
        if not system:
            authorize_upgrade(command.caller, self.settings)
        return apply_upgrade(self.state, command.args)

    def _merge(self, patch: Patch) -> None:
        if self.git is None:
            logger.info("merge_skipped", patch_id=patch.id, reason="no_git_collaborator")
            return
        if not merge_patch(self.git, patch.diff):
            raise MergeFailure(
                f"Merging patch {patch.id} failed; it stays '{PatchState.PENDING.value}'"
            )

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    def lookup(self, artifact_id: ArtifactId) -> Record:
        """Return the record for an id; raises NotFound."""
        return self.state.store.lookup(artifact_id)

    def list(self, kind: Optional[ArtifactKind] = None) -> List[Tuple[ArtifactId, Record]]:
        """(id, record) pairs in insertion order."""
        return self.state.store.list(kind)

    def identity(self, name: str) -> Identity:
        return self.state.identities.by_name(name)

    def identities(self) -> List[Identity]:
        return self.state.identities.list()

    @property
    def schema_version(self) -> int:
        return self.state.schema_version

    @property
    def command_names(self) -> List[str]:
        return self.state.commands.names()

    def digest(self) -> str:
        """sha256 over the canonical dump of the replicated state."""
        payload = {
            "schema_version": self.state.schema_version,
            "last_patch_id": self.state.store.last_patch_id,
            "artifacts": self.state.store.dump(),
            "identities": [entry.model_dump(mode="json") for entry in self.state.identities.list()],
            "commands": self.state.commands.names(),
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def create_machine(
    settings: Optional[Settings] = None,
    git: Optional[GitCollaborator] = None,
) -> Machine:
    """Build a machine with the default command set installed."""
    machine = Machine(settings=settings, git=git)
    result = machine.bootstrap()
    if not result.ok:
        raise RuntimeError(f"Machine bootstrap failed: {result.error}")
    return machine
