"""
Error taxonomy for command application.

Every fault raised while applying a command is a MachineError carrying a
stable code. The engine converts them into failed CommandResults; none of
them escape Machine.process.
"""

from __future__ import annotations

from typing import Any, Dict


class MachineError(Exception):
    """
    Base class for recoverable command faults.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        status_code: HTTP status used by the API surface
    """

    code = "MACHINE_ERROR"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": "command_failed",
            "code": self.code,
            "message": self.message,
        }


class UnknownCommand(MachineError):
    code = "UNKNOWN_COMMAND"
    status_code = 404

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Command '{command}' is not installed")


class NotFound(MachineError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, what: str, identifier: Any):
        self.identifier = identifier
        super().__init__(f"{what} '{identifier}' not found")


class IdentifierConflict(MachineError):
    code = "IDENTIFIER_CONFLICT"
    status_code = 409


class InvalidSignature(MachineError):
    code = "INVALID_SIGNATURE"
    status_code = 422


class IllegalTransition(MachineError):
    """State-machine rule violation or unauthorized actor on a patch."""

    code = "ILLEGAL_TRANSITION"
    status_code = 409


class UpgradeFailure(MachineError):
    code = "UPGRADE_FAILURE"
    status_code = 422


class InvalidArguments(MachineError):
    code = "INVALID_ARGUMENTS"
    status_code = 422


class Unauthorized(MachineError):
    code = "UNAUTHORIZED"
    status_code = 403


class MergeFailure(MachineError):
    """The git collaborator refused the accept transition."""

    code = "MERGE_FAILURE"
    status_code = 502


class HandlerFault(MachineError):
    """An installed handler raised something other than a MachineError."""

    code = "HANDLER_FAULT"
    status_code = 500


STATUS_BY_CODE = {
    cls.code: cls.status_code
    for cls in (
        UnknownCommand,
        NotFound,
        IdentifierConflict,
        InvalidSignature,
        IllegalTransition,
        UpgradeFailure,
        InvalidArguments,
        Unauthorized,
        MergeFailure,
        HandlerFault,
    )
}
