from pathlib import Path

import pytest
import yaml

from playengine.contracts import CurrentUser, NodeStatus, PendingAction, PlayStatus, Workstream
from playengine.errors import InvalidResumption, MalformedPlay, WorkstreamNotFound
from playengine.execute import StepExecutor
from playengine.loader import InMemoryPlaySource, load_play_file, play_from_definition
from playengine.persistence import InMemoryExecutionStateStore, SQLiteExecutionStateStore
from playengine.scheduler import PlayScheduler
from playengine.steps import default_registry

PLAYS = Path(__file__).parent / "fixtures" / "plays"


@pytest.fixture
def play():
    return load_play_file(PLAYS / "deal_review.yaml")


@pytest.fixture
def store():
    return InMemoryExecutionStateStore()


@pytest.fixture
def scheduler(play, store):
    return PlayScheduler(
        store, plays=InMemoryPlaySource([play]), executor=StepExecutor(default_registry())
    )


@pytest.fixture
def legal():
    return CurrentUser(id="u-legal", roles=["legal"])


def _workstream(**fields) -> Workstream:
    return Workstream(id="ws-1", name="Acme renewal", owner_id="owner@example.com", **fields)


@pytest.mark.asyncio
async def test_approval_blocks_then_resume_completes_play(scheduler, store, play, legal):
    outcome = await scheduler.execute_play(_workstream(annual_value=250000), play)

    assert outcome.status == PlayStatus.AWAITING_INPUT
    assert outcome.pending_action.type == "approval_decision"
    assert outcome.pending_action.node_id == "legal_approval"
    assert outcome.pending_action.details["approver_role"] == "legal"
    assert await scheduler.get_pending_action("ws-1") == outcome.pending_action

    resumed = await scheduler.resume_play_execution(
        "ws-1",
        {"type": "approval_decision", "node_id": "legal_approval"},
        {"decision": "approved"},
        legal,
    )

    assert resumed.status == PlayStatus.COMPLETED
    gate = resumed.state_for("legal_approval")
    assert gate.status == NodeStatus.COMPLETED
    assert gate.output["decision"] == "approved"
    assert gate.output["decided_by"] == "u-legal"
    assert resumed.state_for("notify_owner").status == NodeStatus.COMPLETED
    assert resumed.state_for("done").status == NodeStatus.COMPLETED
    assert resumed.state_for("rejected").status == NodeStatus.SKIPPED
    assert resumed.dispatched == ["legal_approval", "notify_owner", "done"]

    workstream = await store.load_workstream("ws-1")
    assert workstream.field_values()["approval_status"] == "approved"
    activity = [e.activity_type for e in await store.list_activity("ws-1")]
    assert "node_resumed" in activity
    assert activity[-1] == "play_completed"
    assert await scheduler.get_pending_actions("ws-1") == []
    assert not await scheduler.has_active_play("ws-1")


@pytest.mark.asyncio
async def test_rejection_routes_to_rejected_end(scheduler, play, legal):
    await scheduler.execute_play(_workstream(annual_value=250000), play)

    resumed = await scheduler.resume_play_execution(
        "ws-1", PendingAction(type="approval_decision"), {"decision": "rejected"}, legal
    )

    assert resumed.status == PlayStatus.COMPLETED
    assert resumed.state_for("rejected").status == NodeStatus.COMPLETED
    assert resumed.state_for("notify_owner").status == NodeStatus.SKIPPED
    assert resumed.state_for("done").status == NodeStatus.SKIPPED


@pytest.mark.asyncio
async def test_small_deal_is_auto_approved(scheduler, play):
    outcome = await scheduler.execute_play(_workstream(annual_value=5000), play)

    assert outcome.status == PlayStatus.COMPLETED
    assert outcome.state_for("legal_approval").output["auto_approved"] is True
    assert outcome.workstream.field_values()["approval_status"] == "approved"


@pytest.mark.asyncio
async def test_rejected_response_leaves_state_untouched(scheduler, store, play, legal):
    await scheduler.execute_play(_workstream(annual_value=250000), play)
    writes = store.state_writes
    activity = len(await store.list_activity("ws-1"))

    with pytest.raises(InvalidResumption, match="not one of"):
        await scheduler.resume_play_execution(
            "ws-1", {"type": "approval_decision"}, {"decision": "maybe"}, legal
        )
    with pytest.raises(InvalidResumption, match="lacks required role"):
        await scheduler.resume_play_execution(
            "ws-1",
            {"type": "approval_decision"},
            {"decision": "approved"},
            CurrentUser(id="u-sales", roles=["sales"]),
        )
    with pytest.raises(InvalidResumption, match="found 0"):
        await scheduler.resume_play_execution(
            "ws-1", {"type": "manual_task"}, {"completed": True}, legal
        )
    with pytest.raises(InvalidResumption, match="found 0"):
        await scheduler.resume_play_execution(
            "ws-1", {"type": "approval_decision", "gate": 7}, {"decision": "approved"}, legal
        )

    assert store.state_writes == writes
    assert len(await store.list_activity("ws-1")) == activity
    states = {s.node_id: s for s in await scheduler.get_node_states("ws-1")}
    assert states["legal_approval"].status == NodeStatus.BLOCKED


@pytest.mark.asyncio
async def test_resume_twice_is_rejected(scheduler, play, legal):
    await scheduler.execute_play(_workstream(annual_value=250000), play)
    pending = {"type": "approval_decision", "node_id": "legal_approval"}
    await scheduler.resume_play_execution("ws-1", pending, {"decision": "approved"}, legal)

    with pytest.raises(InvalidResumption):
        await scheduler.resume_play_execution("ws-1", pending, {"decision": "approved"}, legal)


@pytest.mark.asyncio
async def test_resume_unknown_workstream(scheduler):
    with pytest.raises(WorkstreamNotFound):
        await scheduler.resume_play_execution(
            "missing", {"type": "approval_decision"}, {"decision": "approved"}
        )


@pytest.mark.asyncio
async def test_resume_survives_restart_with_sqlite(tmp_path, play, legal):
    db_path = tmp_path / "engine.db"
    first = SQLiteExecutionStateStore(db_path)
    scheduler = PlayScheduler(first, plays=InMemoryPlaySource([play]))
    outcome = await scheduler.execute_play(_workstream(annual_value=250000), play)
    assert outcome.status == PlayStatus.AWAITING_INPUT
    first.close()

    second = SQLiteExecutionStateStore(db_path)
    restarted = PlayScheduler(second, plays=InMemoryPlaySource([play]))
    assert await restarted.has_active_play("ws-1")
    resumed = await restarted.resume_play_execution(
        "ws-1", {"type": "approval_decision"}, {"decision": "approved"}, legal
    )
    assert resumed.status == PlayStatus.COMPLETED
    second.close()


@pytest.mark.asyncio
async def test_resume_against_edited_malformed_gate_raises_engine_error(play, store, legal):
    blocked = PlayScheduler(store, plays=InMemoryPlaySource([play]))
    await blocked.execute_play(_workstream(annual_value=250000), play)
    writes = store.state_writes

    definition = yaml.safe_load((PLAYS / "deal_review.yaml").read_text())
    gate = next(n for n in definition["nodes"] if n["id"] == "legal_approval")
    gate["config"]["decision_options"] = []
    edited = play_from_definition(definition)
    scheduler = PlayScheduler(store, plays=InMemoryPlaySource([edited]))

    with pytest.raises(MalformedPlay, match="decision_options must not be empty"):
        await scheduler.resume_play_execution(
            "ws-1", {"type": "approval_decision"}, {"decision": "approved"}, legal
        )

    assert store.state_writes == writes
    states = {s.node_id: s for s in await scheduler.get_node_states("ws-1")}
    assert states["legal_approval"].status == NodeStatus.BLOCKED
