import asyncio
from pathlib import Path

from typer.testing import CliRunner

import playengine.persistence as persistence
from playengine.cli import app
from playengine.contracts import ActivityEntry
from playengine.persistence import InMemoryExecutionStateStore

FIXTURES = Path(__file__).parent.parent / "fixtures"
DEAL_REVIEW = str(FIXTURES / "plays" / "deal_review.yaml")


def _setup_store() -> InMemoryExecutionStateStore:
    store = InMemoryExecutionStateStore()
    persistence._store_instance = store
    return store


def test_play_validate_reports_entry_and_terminals():
    runner = CliRunner()
    result = runner.invoke(app, ["play", "validate", DEAL_REVIEW])

    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Play deal_review is valid (5 nodes, 4 edges)" in result.stdout
    assert "Entry: start" in result.stdout
    assert "Terminals: rejected, done" in result.stdout


def test_play_validate_rejects_malformed_play():
    runner = CliRunner()
    result = runner.invoke(app, ["play", "validate", str(FIXTURES / "plays" / "broken.yaml")])

    assert result.exit_code == 1
    assert "Invalid play" in result.stdout


def test_play_run_then_resume_from_cli():
    store = _setup_store()
    runner = CliRunner()

    result = runner.invoke(
        app, ["play", "run", DEAL_REVIEW, "--workstream", str(FIXTURES / "workstream.yaml")]
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Workstream ws-fixture: awaiting_input" in result.stdout
    assert "Awaiting approval_decision on legal_approval" in result.stdout

    result = runner.invoke(app, ["workstream", "pending", "ws-fixture"])
    assert result.exit_code == 0
    assert "legal_approval\tapproval_decision" in result.stdout

    result = runner.invoke(
        app,
        [
            "workstream",
            "resume",
            "ws-fixture",
            "--action",
            "approval_decision",
            "--response",
            '{"decision": "approved"}',
            "--play",
            DEAL_REVIEW,
            "--user-id",
            "u-legal",
            "--role",
            "legal",
        ],
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Workstream ws-fixture: completed" in result.stdout

    result = runner.invoke(app, ["workstream", "states", "ws-fixture"])
    assert result.exit_code == 0
    assert "legal_approval: completed" in result.stdout
    assert "rejected: skipped" in result.stdout

    result = runner.invoke(app, ["workstream", "activity", "ws-fixture"])
    assert result.exit_code == 0
    assert "play_completed" in result.stdout
    assert asyncio.run(store.load_workstream("ws-fixture")).play_id == "deal_review"


def test_resume_without_required_role_fails():
    _setup_store()
    runner = CliRunner()
    runner.invoke(app, ["play", "run", DEAL_REVIEW, "--workstream", str(FIXTURES / "workstream.yaml")])

    result = runner.invoke(
        app,
        [
            "workstream",
            "resume",
            "ws-fixture",
            "--action",
            "approval_decision",
            "--response",
            '{"decision": "approved"}',
            "--play",
            DEAL_REVIEW,
        ],
    )
    assert result.exit_code == 1
    assert "lacks required role" in result.stdout


def test_workstream_commands_handle_unknown_ids():
    _setup_store()
    runner = CliRunner()

    result = runner.invoke(app, ["workstream", "states", "missing"])
    assert result.exit_code == 1
    assert "Workstream not found" in result.stdout

    result = runner.invoke(app, ["workstream", "pending", "missing"])
    assert result.exit_code == 0
    assert "No pending actions" in result.stdout

    result = runner.invoke(app, ["workstream", "activity", "missing"])
    assert result.exit_code == 0
    assert "No activity recorded" in result.stdout


def test_activity_lists_entries_in_order():
    store = _setup_store()
    for activity_type in ("play_started", "node_completed"):
        asyncio.run(
            store.append_activity(
                "ws-1", ActivityEntry(workstream_id="ws-1", activity_type=activity_type)
            )
        )

    result = CliRunner().invoke(app, ["workstream", "activity", "ws-1"])
    assert result.exit_code == 0
    assert result.stdout.index("play_started") < result.stdout.index("node_completed")
