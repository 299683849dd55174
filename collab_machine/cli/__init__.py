"""
Command Line Interface for Collab Machine.

Client-side helpers: key generation, signing issues into log entries,
replaying a command log into a fresh machine, checking patches out into
a working copy, and serving the API.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..config import Settings, get_settings
from ..git import GitRepository
from ..machine import Command, MachineError, create_machine, generate_keypair, generate_ulid, sign
from ..machine.signing import canonical_message, public_key_for

app = typer.Typer(help="Collab Machine - replicated issues and patches")
console = Console()


def _settings_with(machine_id: Optional[str], maintainer: Optional[str]) -> Settings:
    overrides: Dict[str, Any] = {}
    if machine_id:
        overrides["machine_id"] = machine_id
    if maintainer:
        overrides["maintainer"] = maintainer
    return get_settings().model_copy(update=overrides)


def load_log(path: Path) -> List[Dict[str, Any]]:
    """Read a JSON Lines command log; blank lines are skipped."""
    entries = []
    with path.open("r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise typer.BadParameter(f"{path}:{number}: invalid JSON ({e.msg})")
    return entries


@app.command()
def keygen(
    output_json: bool = typer.Option(False, "--json", help="Print the key pair as JSON"),
):
    """Generate an Ed25519 key pair."""
    pair = generate_keypair()
    if output_json:
        typer.echo(json.dumps({"secret_key": pair.secret_key, "public_key": pair.public_key}))
        return
    console.print(Panel.fit(f"[bold]public[/bold]  {pair.public_key}\n[bold]secret[/bold]  {pair.secret_key}",
                            title="New key pair", style="green"))
    console.print("Keep the secret key out of the log; share only the public key.")


@app.command("sign-issue")
def sign_issue(
    title: str = typer.Option(..., help="Issue title"),
    body: str = typer.Option("", help="Issue body"),
    secret_key: str = typer.Option(..., envvar="COLLAB_SECRET_KEY", help="Hex secret key"),
    issue_id: Optional[str] = typer.Option(None, "--id", help="Issue id (default: new ULID)"),
    machine_id: Optional[str] = typer.Option(None, help="Machine id (default: from settings)"),
):
    """Print a signed create-issue log entry as one JSON line."""
    settings = _settings_with(machine_id, None)
    issue_id = issue_id or generate_ulid()
    try:
        author = public_key_for(secret_key)
    except (ValueError, TypeError) as e:
        raise typer.BadParameter(f"secret key is not a hex Ed25519 seed: {e}", param_hint="--secret-key")

    message = canonical_message(settings.machine_id, issue_id, title, body)
    command = Command(
        command="create-issue",
        caller=author,
        args={
            "id": issue_id,
            "author": author,
            "title": title,
            "body": body,
            "signature": sign(secret_key, message),
        },
        timestamp=datetime.now(timezone.utc),
    )
    typer.echo(command.model_dump_json())


@app.command()
def replay(
    log: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON Lines command log"),
    machine_id: Optional[str] = typer.Option(None, help="Machine id (default: from settings)"),
    maintainer: Optional[str] = typer.Option(None, help="Maintainer identity"),
    strict: bool = typer.Option(False, help="Exit non-zero if any command failed"),
):
    """Replay a command log into a fresh machine and show the outcome."""
    machine = create_machine(_settings_with(machine_id, maintainer))
    results = machine.replay(load_log(log))

    table = Table(title=f"Replay of {log.name}", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Command", style="cyan")
    table.add_column("Result")

    for index, result in enumerate(results, start=1):
        if result.ok:
            outcome = f"[green]ok[/green] {escape(json.dumps(result.value, default=str))}"
        else:
            outcome = f"[red]{result.code}[/red] {escape(result.error['message'])}"
        table.add_row(str(index), result.command, outcome)

    console.print(table)
    failed = sum(1 for result in results if not result.ok)
    console.print(
        f"{len(results)} commands, {failed} failed, "
        f"{len(machine.list())} artifacts, digest [bold]{machine.digest()}[/bold]",
        soft_wrap=True,
    )
    if strict and failed:
        raise typer.Exit(code=1)


@app.command()
def checkout(
    log: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON Lines command log"),
    patch_id: int = typer.Argument(..., help="Patch to check out"),
    repo: Optional[Path] = typer.Option(None, help="Working copy (default: COLLAB_GIT_REPO_PATH)"),
    machine_id: Optional[str] = typer.Option(None, help="Machine id (default: from settings)"),
):
    """Replay a log, then check a patch out on ``patch/<id>`` in a working copy."""
    settings = _settings_with(machine_id, None)
    path = repo or settings.git_repo_path
    if not path:
        raise typer.BadParameter("no working copy given and COLLAB_GIT_REPO_PATH is unset", param_hint="--repo")

    machine = create_machine(settings)
    machine.replay(load_log(log))
    try:
        patch = machine.lookup(patch_id)
    except MachineError as e:
        console.print(f"[red]{e.code}[/red] {escape(e.message)}")
        raise typer.Exit(code=1)

    repository = GitRepository(path, mainline=settings.git_mainline, remote=None)
    if not repository.checkout_patch(patch.id, patch.commit, patch.diff):
        console.print(f"[red]Could not check out patch {patch.id} at {patch.commit}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Patch {patch.id} ([cyan]{patch.state.value}[/cyan]) checked out on [bold]patch/{patch.id}[/bold]")


@app.command()
def serve(
    port: int = typer.Option(None, help="Port to run the API server on"),
    host: str = typer.Option(None, help="Host to bind the server to"),
):
    """Serve the HTTP API."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    console.print(Panel.fit("Starting Collab Machine", style="bold blue"))
    uvicorn.run(
        "collab_machine.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
        workers=1,
    )


if __name__ == "__main__":
    app()
