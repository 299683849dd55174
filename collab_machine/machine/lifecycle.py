"""
Patch lifecycle rules.

Transitions are data, not code: a new transition is a new row in
TRANSITIONS (and optionally EFFECTS), not a new handler.

    pending -> retracted   author, maintainer
    pending -> accepted    maintainer   (effect: merge)
    pending -> rejected    maintainer

retracted, accepted and rejected are terminal.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Tuple

from .enums import PatchState, Role
from .errors import IllegalTransition, InvalidArguments
from .patch import Patch

TRANSITIONS: Dict[Tuple[PatchState, PatchState], FrozenSet[Role]] = {
    (PatchState.PENDING, PatchState.RETRACTED): frozenset({Role.AUTHOR, Role.MAINTAINER}),
    (PatchState.PENDING, PatchState.ACCEPTED): frozenset({Role.MAINTAINER}),
    (PatchState.PENDING, PatchState.REJECTED): frozenset({Role.MAINTAINER}),
}

# Side effects run by the engine after the handler and before commit.
EFFECTS: Dict[PatchState, str] = {
    PatchState.ACCEPTED: "merge",
}

EDITABLE_FIELDS = frozenset({"state"})


def roles_of(patch: Patch, caller: Optional[str], maintainer: str) -> FrozenSet[Role]:
    """Roles the caller holds on this patch."""
    if not caller:
        return frozenset()
    roles = set()
    if caller == patch.author:
        roles.add(Role.AUTHOR)
    if maintainer and caller == maintainer:
        roles.add(Role.MAINTAINER)
    return frozenset(roles)


def parse_state(raw: object) -> PatchState:
    try:
        return PatchState(raw)
    except ValueError:
        allowed = ", ".join(s.value for s in PatchState)
        raise InvalidArguments(f"Unknown patch state {raw!r}. Allowed states: {allowed}") from None


def is_terminal(state: PatchState) -> bool:
    return not any(source == state for source, _ in TRANSITIONS)


def check_transition(
    patch: Patch,
    target: PatchState,
    caller: Optional[str],
    maintainer: str,
) -> FrozenSet[Role]:
    """
    Validate a state change against the rule table.

    Returns:
        The caller's roles on the patch

    Raises:
        IllegalTransition: no rule for (current, target), or the caller holds
            none of the permitted roles
    """
    permitted = TRANSITIONS.get((patch.state, target))
    if permitted is None:
        raise IllegalTransition(
            f"Patch {patch.id} cannot move from '{patch.state.value}' to '{target.value}'"
        )
    roles = roles_of(patch, caller, maintainer)
    if not roles & permitted:
        allowed = ", ".join(sorted(role.value for role in permitted))
        raise IllegalTransition(
            f"Caller may not move patch {patch.id} to '{target.value}' (requires: {allowed})"
        )
    return roles
