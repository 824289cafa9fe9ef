"""Command line interface for validating and running plays."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from playengine import PlayScheduler, get_store, load_config, load_play_file
from playengine.contracts import CurrentUser, PlayExecutionOutcome, PlayStatus, Workstream
from playengine.errors import MalformedPlay, PlayEngineError
from playengine.graph import PlayGraph
from playengine.loader import InMemoryPlaySource, PlaySource, get_play_source

app = typer.Typer(help="CLI for playengine plays and workstreams")

# Command groups
play_app = typer.Typer(help="Commands for play definitions")
workstream_app = typer.Typer(help="Commands for workstream execution state")

app.add_typer(play_app, name="play")
app.add_typer(workstream_app, name="workstream")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
) -> None:
    """Playengine CLI entry point."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def _user(user_id: Optional[str], roles: List[str]) -> Optional[CurrentUser]:
    if not user_id:
        return None
    return CurrentUser(id=user_id, roles=roles)


def _load_play_or_exit(path: Path):
    try:
        return load_play_file(path)
    except FileNotFoundError:
        typer.secho(f"Play file not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except MalformedPlay as exc:
        typer.secho(f"Invalid play: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _play_source(play_file: Optional[Path]) -> PlaySource:
    if play_file is not None:
        return InMemoryPlaySource([_load_play_or_exit(play_file)])
    return get_play_source(load_config().plays_path)


def _scheduler(plays: PlaySource) -> PlayScheduler:
    config = load_config()
    return PlayScheduler(get_store(), plays=plays, config=config.scheduler)


def _echo_outcome(outcome: PlayExecutionOutcome) -> None:
    typer.echo(f"Workstream {outcome.workstream_id}: {outcome.status.value}")
    for state in outcome.states:
        typer.echo(f"- {state.node_id}: {state.status.value}")
    for action in outcome.pending_actions:
        typer.echo(f"Awaiting {action.type} on {action.node_id}: {action.description}")
    if outcome.error:
        typer.secho(f"Error ({outcome.error_type}): {outcome.error}", fg=typer.colors.RED)
    for message in outcome.condition_errors:
        typer.secho(f"Condition error: {message}", fg=typer.colors.YELLOW)


@play_app.command("validate")
def play_validate(play_file: Path) -> None:
    """Check a play file for structural errors.

    Example:
        playengine play validate ./plays/deal_review.yaml
    """
    play = _load_play_or_exit(play_file)
    graph = PlayGraph(play)
    terminals = ", ".join(n.id for n in graph.terminal_nodes())
    typer.echo(f"Play {play.id} is valid ({len(play.nodes)} nodes, {len(play.edges)} edges)")
    typer.echo(f"Entry: {graph.entry_node().id}")
    typer.echo(f"Terminals: {terminals}")


@play_app.command("run")
def play_run(
    play_file: Path,
    workstream_file: Optional[Path] = typer.Option(
        None, "--workstream", help="YAML/JSON file with the workstream fields"
    ),
    workstream_id: Optional[str] = typer.Option(
        None, "--workstream-id", help="Id of a stored workstream to advance"
    ),
    user_id: Optional[str] = typer.Option(None, "--user-id"),
    role: List[str] = typer.Option([], "--role", help="Role of the acting user"),
) -> None:
    """Start or advance a play for a workstream.

    Example:
        playengine play run deal_review.yaml --workstream ws-1.yaml --user-id u1 --role legal
    """
    play = _load_play_or_exit(play_file)
    scheduler = _scheduler(InMemoryPlaySource([play]))
    store = get_store()

    if workstream_file is not None:
        with open(workstream_file) as f:
            workstream = Workstream.model_validate(yaml.safe_load(f) or {})
    elif workstream_id:
        workstream = asyncio.run(store.load_workstream(workstream_id))
        if workstream is None:
            typer.echo("Workstream not found")
            raise typer.Exit(code=1)
    else:
        typer.secho("Pass --workstream or --workstream-id", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    outcome = asyncio.run(scheduler.execute_play(workstream, play, _user(user_id, role)))
    _echo_outcome(outcome)
    if outcome.status == PlayStatus.FAILED:
        raise typer.Exit(code=1)


@workstream_app.command("states")
def workstream_states(workstream_id: str) -> None:
    """Show the node execution states of a workstream."""
    store = get_store()
    workstream = asyncio.run(store.load_workstream(workstream_id))
    if workstream is None or not workstream.play_id:
        typer.echo("Workstream not found")
        raise typer.Exit(code=1)
    states = asyncio.run(store.load_node_execution_states(workstream_id, workstream.play_id))
    if not states:
        typer.echo("No node states recorded")
        return
    typer.echo(f"Workstream {workstream_id} on play {workstream.play_id}")
    for state in sorted(states, key=lambda s: s.updated_at):
        typer.echo(
            f"- {state.node_id}: {state.status.value}"
            + (
                f" ({state.started_at} -> {state.completed_at})"
                if state.started_at or state.completed_at
                else ""
            )
        )


@workstream_app.command("pending")
def workstream_pending(workstream_id: str) -> None:
    """List the actions a workstream is waiting for."""
    scheduler = PlayScheduler(get_store())
    actions = asyncio.run(scheduler.get_pending_actions(workstream_id))
    if not actions:
        typer.echo("No pending actions")
        return
    for action in actions:
        typer.echo(f"{action.node_id}\t{action.type}\t{action.description}")


@workstream_app.command("resume")
def workstream_resume(
    workstream_id: str,
    action_type: str = typer.Option(..., "--action", help="Pending action type"),
    node_id: Optional[str] = typer.Option(None, "--node-id"),
    response: str = typer.Option("{}", "--response", help="JSON user response"),
    play_file: Optional[Path] = typer.Option(
        None, "--play", help="Play file; defaults to the configured plays_path"
    ),
    user_id: Optional[str] = typer.Option(None, "--user-id"),
    role: List[str] = typer.Option([], "--role", help="Role of the acting user"),
) -> None:
    """Deliver input to a blocked node and continue the play.

    Example:
        playengine workstream resume ws-1 --action approval_decision \\
            --response '{"decision": "approved"}' --user-id u1 --role legal
    """
    try:
        user_response = json.loads(response)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid --response JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    scheduler = _scheduler(_play_source(play_file))
    pending = {"type": action_type, "node_id": node_id}
    try:
        outcome = asyncio.run(
            scheduler.resume_play_execution(
                workstream_id, pending, user_response, _user(user_id, role)
            )
        )
    except PlayEngineError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_outcome(outcome)


@workstream_app.command("activity")
def workstream_activity(workstream_id: str) -> None:
    """Print the activity trail of a workstream."""
    entries = asyncio.run(get_store().list_activity(workstream_id))
    if not entries:
        typer.echo("No activity recorded")
        return
    for entry in entries:
        node = f" [{entry.node_id}]" if entry.node_id else ""
        typer.echo(f"{entry.created_at}\t{entry.activity_type}{node}\t{entry.description}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
