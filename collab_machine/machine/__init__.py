"""
Replicated state machine for issues, patches and identities.

Commands from a totally ordered log are applied one at a time by the
Machine; every replica applying the same log reaches the same state.
"""

from .engine import Command, CommandResult, Machine, create_machine
from .enums import ArtifactKind, PatchState, Role
from .errors import (
    HandlerFault,
    IdentifierConflict,
    IllegalTransition,
    InvalidArguments,
    InvalidSignature,
    MachineError,
    MergeFailure,
    NotFound,
    Unauthorized,
    UnknownCommand,
    UpgradeFailure,
)
from .identity import Identity, IdentityRegistry
from .issue import Issue
from .patch import Patch
from .primitives import Comment, generate_ulid, utc_now
from .signing import canonical_message, generate_keypair, sign, verify_signature
from .state import CommandContext, CommandTable, MachineState
from .store import EntityStore
from .upgrade import UPGRADE_COMMAND, bootstrap_upgrade

__all__ = [
    # Engine
    "Command",
    "CommandResult",
    "Machine",
    "create_machine",
    "UPGRADE_COMMAND",
    "bootstrap_upgrade",
    # State
    "CommandContext",
    "CommandTable",
    "EntityStore",
    "IdentityRegistry",
    "MachineState",
    # Records
    "Comment",
    "Identity",
    "Issue",
    "Patch",
    # Enums
    "ArtifactKind",
    "PatchState",
    "Role",
    # Signing
    "canonical_message",
    "generate_keypair",
    "sign",
    "verify_signature",
    # Errors
    "HandlerFault",
    "IdentifierConflict",
    "IllegalTransition",
    "InvalidArguments",
    "InvalidSignature",
    "MachineError",
    "MergeFailure",
    "NotFound",
    "Unauthorized",
    "UnknownCommand",
    "UpgradeFailure",
    # Helpers
    "generate_ulid",
    "utc_now",
]
