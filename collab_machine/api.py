"""
FastAPI surface for the machine.

POST /commands is the only write path. Everything else reads.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException

from .config import get_settings
from .git import git_from_settings
from .machine import ArtifactKind, Command, Machine, MachineError, create_machine, utc_now
from .machine.errors import STATUS_BY_CODE

# Initialize structured logging
logger = structlog.get_logger()

# Global machine instance
machine: Optional[Machine] = None

settings = get_settings()


def get_machine() -> Machine:
    """Return the process-wide machine, creating it on first use."""
    global machine
    if machine is None:
        machine = create_machine(settings, git=git_from_settings(settings))
        logger.info(
            "Machine bootstrapped",
            machine_id=settings.machine_id,
            schema_version=machine.schema_version,
        )
    return machine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting Collab Machine")
    try:
        get_machine()
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="Collab Machine",
    description="Replicated state machine for collaborative issues and patches",
    version=importlib.metadata.version("collab-machine"),
    lifespan=lifespan,
)


def _raise_for(error: MachineError) -> None:
    raise HTTPException(status_code=error.status_code, detail=error.to_dict())


# Health and Info Endpoints
@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("collab-machine")}


@app.get("/state")
def get_state(m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """Schema version, installed commands and the state digest."""
    return {
        "machine_id": m.settings.machine_id,
        "schema_version": m.schema_version,
        "commands": m.command_names,
        "digest": m.digest(),
    }


# =============================================================================
# Commands
# =============================================================================


@app.post("/commands")
def post_command(command: Command, m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """Apply one command; failures map to the error's HTTP status.

    Commands submitted without a timestamp are stamped on arrival.
    """
    if command.timestamp is None:
        command = command.model_copy(update={"timestamp": utc_now()})
    result = m.apply(command)
    if not result.ok:
        raise HTTPException(status_code=_status_for(result.code), detail=result.error)
    return result.model_dump(mode="json")


def _status_for(code: Optional[str]) -> int:
    return STATUS_BY_CODE.get(code or "", 400)


# =============================================================================
# Artifacts
# =============================================================================


def _dump(records) -> List[Dict[str, Any]]:
    return [record.model_dump(mode="json") for _, record in records]


@app.get("/issues")
def list_issues(m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """List issues in insertion order."""
    issues = _dump(m.list(ArtifactKind.ISSUE))
    return {"issues": issues, "count": len(issues)}


@app.get("/issues/{issue_id}")
def get_issue(issue_id: str, m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """Get an issue by id."""
    try:
        record = m.lookup(issue_id)
    except MachineError as e:
        _raise_for(e)
    if record.kind != ArtifactKind.ISSUE.value:
        raise HTTPException(status_code=404, detail="Issue not found")
    return {"issue": record.model_dump(mode="json")}


@app.get("/patches")
def list_patches(
    state: Optional[str] = None,
    m: Machine = Depends(get_machine),
) -> Dict[str, Any]:
    """List patches, optionally filtered by lifecycle state."""
    patches = _dump(m.list(ArtifactKind.PATCH))
    if state:
        patches = [p for p in patches if p.get("state") == state]
    return {"patches": patches, "count": len(patches)}


@app.get("/patches/{patch_id}")
def get_patch(patch_id: int, m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """Get a patch by id."""
    try:
        record = m.lookup(patch_id)
    except MachineError as e:
        _raise_for(e)
    return {"patch": record.model_dump(mode="json")}


# =============================================================================
# Identities
# =============================================================================


@app.get("/identities")
def list_identities(m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """List registered identities."""
    entries = [entry.model_dump(mode="json") for entry in m.identities()]
    return {"identities": entries, "count": len(entries)}


@app.get("/identities/{name}")
def get_identity(name: str, m: Machine = Depends(get_machine)) -> Dict[str, Any]:
    """Get a registered identity by name."""
    try:
        entry = m.identity(name)
    except MachineError as e:
        _raise_for(e)
    return {"identity": entry.model_dump(mode="json")}
