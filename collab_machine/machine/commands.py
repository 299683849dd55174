"""
Built-in command handlers.

Every handler has the signature ``handler(state, args, ctx) -> value`` and
either completes or raises a MachineError. Partial writes are rolled back by
the engine, so handlers do not clean up after themselves.

HANDLER_REGISTRY is the fixed set of handlers the upgrade gate may install.
DEFAULT_COMMANDS maps the bootstrap command names onto it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, constr

from .enums import ArtifactKind
from .errors import InvalidArguments, InvalidSignature, NotFound, Unauthorized
from .identity import IdentityCreate
from .issue import Issue, IssueClose, IssueCreate
from .lifecycle import EDITABLE_FIELDS, EFFECTS, check_transition, parse_state
from .patch import Patch, PatchCreate, PatchEdit
from .primitives import ArtifactId, Comment, Record
from .signing import canonical_message, verify_signature
from .state import CommandContext, Handler, MachineState

M = TypeVar("M", bound=BaseModel)


class CommentCreate(BaseModel):
    """Arguments of the add-comment command."""

    model_config = ConfigDict(extra="forbid")

    artifact_id: ArtifactId
    body: constr(min_length=1, max_length=16000)
    author: Optional[constr(min_length=1, max_length=256)] = None


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ())) or "args"
        parts.append(f"{loc}: {error.get('msg')}")
    return "; ".join(parts)


def parse_args(model: Type[M], args: Any) -> M:
    """Validate raw command arguments into a model."""
    if not isinstance(args, dict):
        raise InvalidArguments(f"Expected an object of arguments, got {type(args).__name__}")
    try:
        return model.model_validate(args)
    except ValidationError as exc:
        raise InvalidArguments(_format_errors(exc)) from None


def build(model: Type[M], **values: Any) -> M:
    try:
        return model(**values)
    except ValidationError as exc:
        raise InvalidArguments(_format_errors(exc)) from None


def _require_kind(record: Record, kind: ArtifactKind, artifact_id: ArtifactId) -> None:
    if getattr(record, "kind", None) != kind.value:
        raise NotFound(kind.value.capitalize(), artifact_id)


def _require_caller(ctx: CommandContext, command: str) -> str:
    if not ctx.caller:
        raise InvalidArguments(f"'{command}' requires a caller identity")
    return ctx.caller


# =============================================================================
# Identities
# =============================================================================


def register_identity(state: MachineState, args: Any, ctx: CommandContext) -> Dict[str, Any]:
    data = parse_args(IdentityCreate, args)
    entry = state.identities.register(data.name, data.public_key, ctx.timestamp)
    return entry.model_dump(mode="json")


# =============================================================================
# Issues
# =============================================================================


def create_issue(state: MachineState, args: Any, ctx: CommandContext) -> str:
    data = parse_args(IssueCreate, args)
    message = canonical_message(ctx.machine_id, data.id, data.title, data.body)
    if not verify_signature(data.author, data.signature, message):
        raise InvalidSignature(f"Signature on issue '{data.id}' does not verify for its author")

    issue = build(
        Issue,
        id=data.id,
        author=data.author,
        title=data.title,
        body=data.body,
        signature=data.signature.lower(),
        created_at=ctx.timestamp,
    )
    state.store.insert(data.id, issue)
    return data.id


def add_comment(state: MachineState, args: Any, ctx: CommandContext) -> int:
    data = parse_args(CommentCreate, args)
    author = data.author or _require_caller(ctx, "add-comment")
    comment = build(Comment, author=author, body=data.body, created_at=ctx.timestamp)

    def append(record: Record) -> Record:
        comments = tuple(getattr(record, "comments", ()))
        return record.model_copy(update={"comments": comments + (comment,)})

    updated = state.store.update(data.artifact_id, append)
    return len(updated.comments) - 1


def _close_issue(state: MachineState, args: Any, ctx: CommandContext, checked: bool) -> None:
    data = parse_args(IssueClose, args)
    issue = state.store.lookup(data.id)
    _require_kind(issue, ArtifactKind.ISSUE, data.id)

    if checked and ctx.close_issue_policy != "open":
        if ctx.caller != issue.author and not ctx.is_maintainer:
            raise Unauthorized(f"Only the author or the maintainer may close issue '{data.id}'")

    state.store.delete(data.id)
    return None


def close_issue(state: MachineState, args: Any, ctx: CommandContext) -> None:
    """Delete an issue, subject to the configured close policy."""
    return _close_issue(state, args, ctx, checked=True)


def delete_issue(state: MachineState, args: Any, ctx: CommandContext) -> None:
    """Delete an issue unconditionally."""
    return _close_issue(state, args, ctx, checked=False)


# =============================================================================
# Patches
# =============================================================================


def create_patch(state: MachineState, args: Any, ctx: CommandContext) -> int:
    data = parse_args(PatchCreate, args)
    author = _require_caller(ctx, "create-patch")
    patch_id = state.store.next_patch_id()
    patch = build(
        Patch,
        id=patch_id,
        author=author,
        title=data.title,
        body=data.body,
        diff=data.diff,
        commit=data.commit,
        created_at=ctx.timestamp,
        modified_at=ctx.timestamp,
    )
    state.store.insert(patch_id, patch)
    return patch_id


def edit_patch(state: MachineState, args: Any, ctx: CommandContext) -> str:
    """Edit patch fields; only lifecycle-governed fields are editable."""
    data = parse_args(PatchEdit, args)
    unknown = set(data.fields) - EDITABLE_FIELDS
    if unknown:
        raise InvalidArguments(
            f"Fields not editable: {', '.join(sorted(unknown))}. "
            f"Editable fields: {', '.join(sorted(EDITABLE_FIELDS))}"
        )

    patch = state.store.lookup(data.id)
    _require_kind(patch, ArtifactKind.PATCH, data.id)

    target = parse_state(data.fields["state"])
    check_transition(patch, target, ctx.caller, ctx.maintainer)

    updated = state.store.update(
        data.id,
        lambda record: record.model_copy(update={"state": target, "modified_at": ctx.timestamp}),
    )

    effect = EFFECTS.get(target)
    if effect is not None:
        ctx.queue_effect(effect, patch=updated)
    return target.value


HANDLER_REGISTRY: Dict[str, Handler] = {
    "register": register_identity,
    "create-issue": create_issue,
    "add-comment": add_comment,
    "close-issue": close_issue,
    "delete-issue": delete_issue,
    "create-patch": create_patch,
    "edit-patch": edit_patch,
}

# command name -> registry name, installed by the bootstrap upgrade
DEFAULT_COMMANDS: Dict[str, str] = {
    "register": "register",
    "create-issue": "create-issue",
    "add-comment": "add-comment",
    "close-issue": "close-issue",
    "create-patch": "create-patch",
    "edit-patch": "edit-patch",
}
