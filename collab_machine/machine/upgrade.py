"""
Runtime-upgrade gate.

The ``update`` command bypasses the command table and applies a versioned
list of migrations to the whole machine state: record shape changes and
command table changes. Migrations are a closed set of operations rather
than arbitrary code, and handlers can only come from HANDLER_REGISTRY.

An upgrade is all-or-nothing. Migrations run against staged copies of the
store and table; the copies replace live state only after every migration
and every re-validated record succeeded.
"""

from __future__ import annotations

import copy
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, constr

from ..config import Settings, resolve_upgrade_operators
from .commands import DEFAULT_COMMANDS, HANDLER_REGISTRY
from .errors import Unauthorized, UnknownCommand, UpgradeFailure
from .primitives import ArtifactId, Record
from .state import MachineState

logger = structlog.get_logger()

UPGRADE_COMMAND = "update"

TargetKind = Literal["issue", "patch", "all"]
FieldName = constr(pattern=r"^[a-z_][a-z0-9_]{0,63}$")
CommandName = constr(min_length=1, max_length=128)


class AddField(BaseModel):
    """Add a field with a default value to every record of a kind."""

    model_config = ConfigDict(extra="forbid")

    op: Literal["add_field"]
    kind: TargetKind = "all"
    field: FieldName
    default: Any = None


class RenameField(BaseModel):
    """Rename a previously migrated field."""

    model_config = ConfigDict(extra="forbid")

    op: Literal["rename_field"]
    kind: TargetKind = "all"
    field: FieldName
    to: FieldName


class DropField(BaseModel):
    """Drop a previously migrated field."""

    model_config = ConfigDict(extra="forbid")

    op: Literal["drop_field"]
    kind: TargetKind = "all"
    field: FieldName


class InstallHandler(BaseModel):
    """Install (or replace) a command from the handler registry."""

    model_config = ConfigDict(extra="forbid")

    op: Literal["install_handler"]
    command: CommandName
    handler: constr(min_length=1, max_length=128)


class RemoveHandler(BaseModel):
    """Uninstall a command."""

    model_config = ConfigDict(extra="forbid")

    op: Literal["remove_handler"]
    command: CommandName


Migration = Annotated[
    Union[AddField, RenameField, DropField, InstallHandler, RemoveHandler],
    Field(discriminator="op"),
]


class Upgrade(BaseModel):
    """Arguments of the update command."""

    model_config = ConfigDict(extra="forbid")

    version: StrictInt = Field(..., ge=1, description="Must be schema_version + 1")
    migrations: List[Migration] = Field(..., min_length=1)


def bootstrap_upgrade() -> Dict[str, Any]:
    """The version-1 upgrade installing the default command set."""
    return {
        "version": 1,
        "migrations": [
            {"op": "install_handler", "command": command, "handler": handler}
            for command, handler in DEFAULT_COMMANDS.items()
        ],
    }


def authorize_upgrade(caller: Optional[str], settings: Settings) -> None:
    """Raise Unauthorized unless the caller may run the gate."""
    if not settings.allow_runtime_upgrades:
        raise Unauthorized("Runtime upgrades are disabled on this machine")
    operators = resolve_upgrade_operators(settings)
    if not caller or caller not in operators:
        raise Unauthorized("Only upgrade operators may run 'update'")


def _declared(record: Record, field: str) -> bool:
    return field in type(record).model_fields


def _matches(record: Record, kind: str) -> bool:
    return kind == "all" or getattr(record, "kind", None) == kind


def _migrate_record(record: Record, migration: Union[AddField, RenameField, DropField]) -> Record:
    data = record.model_dump()

    if isinstance(migration, AddField):
        if migration.field in data:
            raise UpgradeFailure(f"Field '{migration.field}' already exists on {record.kind} {record.id}")
        data[migration.field] = copy.deepcopy(migration.default)
    else:
        # Declared fields are part of the record schema; only migrated fields move.
        if _declared(record, migration.field):
            raise UpgradeFailure(f"Field '{migration.field}' is declared on {record.kind} and cannot be changed")
        if migration.field not in data:
            raise UpgradeFailure(f"Field '{migration.field}' missing on {record.kind} {record.id}")
        value = data.pop(migration.field)
        if isinstance(migration, RenameField):
            if migration.to in data:
                raise UpgradeFailure(f"Field '{migration.to}' already exists on {record.kind} {record.id}")
            data[migration.to] = value

    try:
        return type(record).model_validate(data)
    except ValidationError as exc:
        raise UpgradeFailure(f"Migrated {record.kind} {record.id} is invalid: {exc.error_count()} error(s)") from None


def apply_upgrade(state: MachineState, args: Any) -> Dict[str, Any]:
    """
    Apply an upgrade to the machine state.

    Returns:
        Summary with the new schema version and the installed command names

    Raises:
        UpgradeFailure: on any invalid upgrade; state is left untouched
    """
    if not isinstance(args, dict):
        raise UpgradeFailure("Upgrade arguments must be an object")
    try:
        upgrade = Upgrade.model_validate(args)
    except ValidationError as exc:
        raise UpgradeFailure(f"Malformed upgrade: {exc.error_count()} error(s)") from None

    expected = state.schema_version + 1
    if upgrade.version != expected:
        raise UpgradeFailure(f"Upgrade version {upgrade.version} does not follow schema version {state.schema_version}")

    records: Dict[ArtifactId, Record] = dict(state.store.list())
    table = state.commands.copy()

    for index, migration in enumerate(upgrade.migrations):
        if isinstance(migration, InstallHandler):
            if migration.command == UPGRADE_COMMAND:
                raise UpgradeFailure(f"'{UPGRADE_COMMAND}' cannot be installed as a command")
            handler = HANDLER_REGISTRY.get(migration.handler)
            if handler is None:
                raise UpgradeFailure(f"Migration {index}: no registered handler '{migration.handler}'")
            table.install(migration.command, handler)
        elif isinstance(migration, RemoveHandler):
            try:
                table.remove(migration.command)
            except UnknownCommand:
                raise UpgradeFailure(f"Migration {index}: command '{migration.command}' is not installed") from None
        else:
            records = {
                key: _migrate_record(record, migration) if _matches(record, migration.kind) else record
                for key, record in records.items()
            }

    state.store.replace_all(records)
    state.commands = table
    state.schema_version = upgrade.version

    logger.info(
        "upgrade_applied",
        version=upgrade.version,
        migrations=len(upgrade.migrations),
        commands=table.names(),
    )
    return {"version": upgrade.version, "commands": table.names()}
