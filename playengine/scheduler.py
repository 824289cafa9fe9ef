"""Play scheduler: drives a workstream through a play's DAG.

The scheduler is request driven. Each call to :meth:`PlayScheduler.execute_play`
or :meth:`PlayScheduler.resume_play_execution` advances the workstream until
the frontier is empty, then returns a :class:`PlayExecutionOutcome`:

1. load the node execution states of the workstream;
2. resolve every edge as taken, dead or unresolved, mark newly reachable
   nodes ``pending`` and nodes whose inbound edges are all dead ``skipped``;
3. dispatch the ready nodes concurrently through the step executor;
4. apply their outcomes one at a time and repeat.

Callers must not run two invocations for the same workstream concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import ValidationError

from .config import SchedulerConfig
from .constants import PARALLEL_SPLIT_STEP_TYPE
from .contracts import (
    ActivityEntry,
    Blocked,
    Completed,
    CurrentUser,
    Failed,
    NodeExecutionState,
    NodeStatus,
    PendingAction,
    Play,
    PlayExecutionOutcome,
    PlayStatus,
    StepExecutionOutcome,
    WorkflowEdge,
    Workstream,
    utcnow,
)
from .conditions import evaluate_condition
from .errors import InvalidCondition, InvalidResumption, WorkstreamNotFound
from .execute import StepExecutor
from .graph import PlayGraph
from .loader import InMemoryPlaySource, PlaySource
from .persistence import ExecutionStateStore

logger = logging.getLogger(__name__)


class EdgeResolution(str, Enum):
    TAKEN = "taken"
    DEAD = "dead"
    UNRESOLVED = "unresolved"


@dataclass
class FrontierPlan:
    """Result of one frontier computation."""

    ready: List[str] = field(default_factory=list)
    newly_pending: List[str] = field(default_factory=list)
    newly_skipped: List[str] = field(default_factory=list)
    condition_errors: Dict[str, str] = field(default_factory=dict)
    # edges that cannot be decided because a guard failed to evaluate
    undecided_edges: Set[str] = field(default_factory=set)


@dataclass
class EdgeDecision:
    """Which outgoing edges of a completed node fire."""

    taken: Set[str] = field(default_factory=set)
    # edges that cannot be decided because a guard failed to evaluate
    undecided: Set[str] = field(default_factory=set)
    errors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_state(cls, state: NodeExecutionState) -> "EdgeDecision":
        return cls(
            taken=set(state.taken_edges or ()),
            undecided=set(state.undecided_edges),
            errors=dict(state.condition_errors),
        )


def decide_edges(
    graph: PlayGraph,
    node_id: str,
    workstream: Workstream,
    output: Mapping[str, Any],
) -> EdgeDecision:
    """Evaluate the outgoing edges of ``node_id`` once it has completed.

    Conditional edges fire when their condition holds. An unconditional edge
    beside conditional siblings is a fallback and fires only when none of
    them does, except on a parallel split node where every unconditional
    edge fires. A guard that cannot be evaluated leaves its edge undecided,
    and so does the fallback while no sibling fires.
    """
    edges = graph.outgoing_edges(node_id)
    decision = EdgeDecision()
    for edge in edges:
        if not edge.is_conditional:
            continue
        try:
            if evaluate_condition(edge.condition, workstream, output):
                decision.taken.add(edge.id)
        except InvalidCondition as exc:
            decision.errors[edge.id] = str(exc)
            decision.undecided.add(edge.id)

    unconditional = [e.id for e in edges if not e.is_conditional]
    if graph.node(node_id).step_type == PARALLEL_SPLIT_STEP_TYPE:
        decision.taken.update(unconditional)
    elif not decision.taken:
        if decision.undecided:
            decision.undecided.update(unconditional)
        else:
            decision.taken.update(unconditional)
    return decision


def _resolve_edge(
    edge: WorkflowEdge,
    status: Optional[NodeStatus],
    taken: Set[str],
    undecided: Set[str],
) -> EdgeResolution:
    if status == NodeStatus.COMPLETED:
        if edge.id in taken:
            return EdgeResolution.TAKEN
        if edge.id in undecided:
            return EdgeResolution.UNRESOLVED
        return EdgeResolution.DEAD
    if status == NodeStatus.SKIPPED:
        return EdgeResolution.DEAD
    return EdgeResolution.UNRESOLVED


def compute_frontier(
    graph: PlayGraph,
    states: Mapping[str, NodeExecutionState],
    workstream: Workstream,
) -> FrontierPlan:
    """Determine which nodes are ready to run.

    Pure function of its inputs. Nodes are visited in topological order so a
    skip propagates down a dead branch in a single pass. A node is ready when
    it is ``pending``, none of its inbound edges is unresolved and at least
    one of them is taken (the entry node has none).

    A completed state carries the edge decisions made when it completed and
    those are used as recorded. Only states written without them are
    evaluated against ``workstream``.
    """
    plan = FrontierPlan()
    virtual: Dict[str, NodeStatus] = {
        n: s.status for n, s in states.items() if graph.has_node(n)
    }
    taken: Set[str] = set()
    for node_id, status in virtual.items():
        if status != NodeStatus.COMPLETED:
            continue
        state = states[node_id]
        if state.taken_edges is None:
            decision = decide_edges(graph, node_id, workstream, state.output)
        else:
            decision = EdgeDecision.from_state(state)
        taken |= decision.taken
        plan.undecided_edges |= decision.undecided
        plan.condition_errors.update(decision.errors)

    entry_id = graph.entry_node().id
    for node_id in graph.topological_order():
        resolutions = [
            _resolve_edge(e, virtual.get(e.from_node_id), taken, plan.undecided_edges)
            for e in graph.incoming_edges(node_id)
        ]
        reachable = node_id == entry_id or EdgeResolution.TAKEN in resolutions

        if node_id not in virtual:
            if reachable:
                virtual[node_id] = NodeStatus.PENDING
                plan.newly_pending.append(node_id)
            elif resolutions and all(r == EdgeResolution.DEAD for r in resolutions):
                virtual[node_id] = NodeStatus.SKIPPED
                plan.newly_skipped.append(node_id)
                continue
            else:
                continue

        if virtual[node_id] != NodeStatus.PENDING:
            continue
        if reachable and EdgeResolution.UNRESOLVED not in resolutions:
            plan.ready.append(node_id)
    return plan


def aggregate_status(
    graph: PlayGraph, states: Mapping[str, NodeExecutionState]
) -> PlayStatus:
    """Collapse per-node states into the play's status."""
    if not states:
        return PlayStatus.NOT_STARTED
    statuses = {s.status for s in states.values()}
    if NodeStatus.FAILED in statuses:
        return PlayStatus.FAILED
    if NodeStatus.RUNNING in statuses:
        return PlayStatus.RUNNING
    if NodeStatus.BLOCKED in statuses:
        return PlayStatus.AWAITING_INPUT
    terminal_done = any(
        s.status == NodeStatus.COMPLETED and graph.is_terminal(n)
        for n, s in states.items()
        if graph.has_node(n)
    )
    if terminal_done and NodeStatus.PENDING not in statuses:
        return PlayStatus.COMPLETED
    return PlayStatus.AWAITING_INPUT


def _previous_outputs(
    graph: PlayGraph, states: Mapping[str, NodeExecutionState]
) -> Dict[str, Dict[str, Any]]:
    return {
        n: states[n].output
        for n in graph.topological_order()
        if n in states and states[n].status == NodeStatus.COMPLETED
    }


def _coerce_action(pending_action: PendingAction | Mapping[str, Any]) -> PendingAction:
    if isinstance(pending_action, PendingAction):
        return pending_action
    if not isinstance(pending_action, Mapping):
        raise InvalidResumption(f"Unsupported pending action: {pending_action!r}")
    known = {"type", "node_id", "description", "details"}
    data = {k: v for k, v in pending_action.items() if k in known}
    extras = {k: v for k, v in pending_action.items() if k not in known}
    data["details"] = {**(data.get("details") or {}), **extras}
    try:
        return PendingAction.model_validate(data)
    except ValidationError as exc:
        raise InvalidResumption(f"Malformed pending action: {exc}") from exc


def _matches(recorded: PendingAction, requested: PendingAction) -> bool:
    if recorded.type != requested.type:
        return False
    if requested.node_id is not None and requested.node_id != recorded.node_id:
        return False
    return all(recorded.details.get(k) == v for k, v in requested.details.items())


@dataclass
class _PlayRun:
    graph: PlayGraph
    workstream: Workstream
    user: Optional[CurrentUser]
    states: Dict[str, NodeExecutionState]
    dispatched: List[str] = field(default_factory=list)
    condition_errors: Dict[str, str] = field(default_factory=dict)
    undecided_edges: Set[str] = field(default_factory=set)
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def play_id(self) -> str:
        return self.graph.play.id

    @property
    def actor_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def failed(self) -> bool:
        return any(s.status == NodeStatus.FAILED for s in self.states.values())


class PlayScheduler:
    """Engine core: frontier computation, dispatch and outcome application."""

    def __init__(
        self,
        store: ExecutionStateStore,
        plays: PlaySource | None = None,
        executor: StepExecutor | None = None,
        config: SchedulerConfig | None = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        self._store = store
        self._plays = plays if plays is not None else InMemoryPlaySource()
        self._executor = executor or StepExecutor(timeout=self._config.step_timeout_seconds)

    # ------------------------------------------------------------------
    # Public API
    async def execute_play(
        self,
        workstream: Workstream,
        play: Play,
        current_user: Optional[CurrentUser] = None,
    ) -> PlayExecutionOutcome:
        """Advance ``workstream`` through ``play`` until no node is ready.

        Raises:
            MalformedPlay: Before anything is written, if the play is invalid.
        """
        graph = PlayGraph(play)
        workstream = await self._attach(workstream, play)
        states = await self._load_states(workstream.id, play.id)
        run = _PlayRun(graph=graph, workstream=workstream, user=current_user, states=states)

        if not states:
            entry = graph.entry_node()
            await self._write(
                run,
                NodeExecutionState(
                    workstream_id=workstream.id, play_id=play.id, node_id=entry.id
                ),
            )
            await self._record_activity(
                run, "play_started", f"Started play {play.name}", node_id=entry.id
            )

        for state in list(run.states.values()):
            if state.status == NodeStatus.RUNNING:
                # Left over from an interrupted invocation.
                run.states[state.node_id] = state.model_copy(
                    update={"status": NodeStatus.PENDING}
                )

        await self._run_to_fixed_point(run)
        return await self._finish(run)

    async def resume_play_execution(
        self,
        workstream_id: str,
        pending_action: PendingAction | Mapping[str, Any],
        user_response: Mapping[str, Any],
        current_user: Optional[CurrentUser] = None,
    ) -> PlayExecutionOutcome:
        """Deliver external input to the blocked node awaiting ``pending_action``.

        Raises:
            WorkstreamNotFound: The workstream is unknown to the store.
            InvalidResumption: No unique blocked node matches the pending
                action or the step rejects ``user_response``.
            MalformedPlay: The blocked node's config is invalid.
            InvalidInput: A bound config value of the node cannot be resolved.

        Nothing is written when any of these is raised.
        """
        workstream = await self._require_workstream(workstream_id)
        if not workstream.play_id:
            raise InvalidResumption(f"Workstream {workstream_id} has no active play")
        play = await self._plays.load_play(workstream.play_id)
        graph = PlayGraph(play)
        requested = _coerce_action(pending_action)

        states = await self._load_states(workstream.id, play.id)
        candidates = [
            s
            for s in states.values()
            if s.status == NodeStatus.BLOCKED
            and s.pending_action is not None
            and _matches(s.pending_action, requested)
        ]
        if len(candidates) != 1:
            raise InvalidResumption(
                f"Expected one blocked node awaiting '{requested.type}' on workstream "
                f"{workstream_id}, found {len(candidates)}"
            )
        blocked = candidates[0]
        node = graph.node(blocked.node_id)

        outcome = await self._executor.resume_step_execution(
            node,
            workstream,
            current_user,
            blocked.pending_action,
            user_response,
            previous_outputs=_previous_outputs(graph, states),
            play_config=play.config,
        )

        run = _PlayRun(graph=graph, workstream=workstream, user=current_user, states=states)
        await self._record_activity(
            run,
            "node_resumed",
            f"Received {requested.type} for {node.label}",
            node_id=node.id,
        )
        run.dispatched.append(node.id)
        await self._apply(run, node.id, outcome)
        await self._run_to_fixed_point(run)
        return await self._finish(run)

    async def advance(
        self, workstream_id: str, current_user: Optional[CurrentUser] = None
    ) -> PlayExecutionOutcome:
        """Re-run the scheduler for a stored workstream."""
        workstream = await self._require_workstream(workstream_id)
        if not workstream.play_id:
            raise InvalidResumption(f"Workstream {workstream_id} has no play assigned")
        play = await self._plays.load_play(workstream.play_id)
        return await self.execute_play(workstream, play, current_user)

    async def has_active_play(self, workstream_id: str) -> bool:
        """True when a play is assigned and has neither completed nor failed."""
        workstream = await self._store.load_workstream(workstream_id)
        if workstream is None or not workstream.play_id:
            return False
        play = await self._plays.load_play(workstream.play_id)
        states = await self._load_states(workstream_id, play.id)
        status = aggregate_status(PlayGraph(play), states)
        return status not in (PlayStatus.COMPLETED, PlayStatus.FAILED)

    async def get_pending_actions(self, workstream_id: str) -> List[PendingAction]:
        workstream = await self._store.load_workstream(workstream_id)
        if workstream is None or not workstream.play_id:
            return []
        states = await self._load_states(workstream_id, workstream.play_id)
        blocked = sorted(
            (s for s in states.values() if s.status == NodeStatus.BLOCKED and s.pending_action),
            key=lambda s: (s.started_at or s.updated_at, s.node_id),
        )
        return [s.pending_action for s in blocked]

    async def get_pending_action(self, workstream_id: str) -> Optional[PendingAction]:
        actions = await self.get_pending_actions(workstream_id)
        return actions[0] if actions else None

    async def get_node_states(self, workstream_id: str) -> List[NodeExecutionState]:
        """Current states, for callers polling for progress."""
        workstream = await self._require_workstream(workstream_id)
        if not workstream.play_id:
            return []
        states = await self._load_states(workstream_id, workstream.play_id)
        return list(states.values())

    # ------------------------------------------------------------------
    # Scheduling loop
    async def _run_to_fixed_point(self, run: _PlayRun) -> None:
        semaphore = asyncio.Semaphore(self._config.max_parallel_nodes)

        while not run.failed:
            plan = compute_frontier(run.graph, run.states, run.workstream)
            self._note_condition_errors(run, plan.condition_errors)
            run.undecided_edges = plan.undecided_edges

            for node_id in plan.newly_skipped:
                now = utcnow()
                await self._write(
                    run,
                    NodeExecutionState(
                        workstream_id=run.workstream.id,
                        play_id=run.play_id,
                        node_id=node_id,
                        status=NodeStatus.SKIPPED,
                        completed_at=now,
                    ),
                )
                await self._record_activity(
                    run,
                    "node_skipped",
                    f"Skipped {run.graph.node(node_id).label}: no inbound path taken",
                    node_id=node_id,
                )
            for node_id in plan.newly_pending:
                await self._write(
                    run,
                    NodeExecutionState(
                        workstream_id=run.workstream.id,
                        play_id=run.play_id,
                        node_id=node_id,
                    ),
                )

            if not plan.ready:
                break

            priors = {n: run.states[n] for n in plan.ready}
            previous_outputs = _previous_outputs(run.graph, run.states)
            for node_id in plan.ready:
                await self._write(
                    run,
                    priors[node_id].model_copy(
                        update={
                            "status": NodeStatus.RUNNING,
                            "started_at": utcnow(),
                            "executed_by": run.actor_id,
                        }
                    ),
                )
            run.dispatched.extend(plan.ready)
            logger.debug(
                f"Dispatching {plan.ready} for workstream_id={run.workstream.id}"
            )

            async def _dispatch(node_id: str) -> StepExecutionOutcome:
                async with semaphore:
                    return await self._executor.execute_step(
                        run.graph.node(node_id),
                        run.workstream,
                        run.user,
                        priors[node_id],
                        previous_outputs=previous_outputs,
                        play_config=run.graph.play.config,
                    )

            outcomes = await asyncio.gather(*(_dispatch(n) for n in plan.ready))
            for node_id, outcome in zip(plan.ready, outcomes):
                await self._apply(run, node_id, outcome)

    async def _apply(
        self, run: _PlayRun, node_id: str, outcome: StepExecutionOutcome
    ) -> None:
        node = run.graph.node(node_id)
        state = run.states[node_id]
        now = utcnow()

        if isinstance(outcome, Completed):
            updates = {
                target: outcome.output[src]
                for src, target in node.output_mapping.items()
                if src in outcome.output
            }
            if updates:
                run.workstream = run.workstream.with_fields(**updates)
            decision = decide_edges(run.graph, node_id, run.workstream, outcome.output)
            await self._write(
                run,
                state.model_copy(
                    update={
                        "status": NodeStatus.COMPLETED,
                        "output": outcome.output,
                        "completed_at": now,
                        "pending_action": None,
                        "error": None,
                        "error_type": None,
                        "executed_by": run.actor_id,
                        "taken_edges": sorted(decision.taken),
                        "undecided_edges": sorted(decision.undecided),
                        "condition_errors": decision.errors,
                    }
                ),
            )
            if updates:
                await self._store.save_workstream(run.workstream)
            await self._record_activity(
                run, "node_completed", f"Completed {node.label}", node_id=node_id
            )
        elif isinstance(outcome, Blocked):
            await self._write(
                run,
                state.model_copy(
                    update={
                        "status": NodeStatus.BLOCKED,
                        "pending_action": outcome.pending_action,
                    }
                ),
            )
            await self._record_activity(
                run,
                "node_blocked",
                outcome.pending_action.description or f"{node.label} awaiting input",
                node_id=node_id,
                metadata={"pending_action": outcome.pending_action.model_dump()},
            )
        elif isinstance(outcome, Failed):
            await self._write(
                run,
                state.model_copy(
                    update={
                        "status": NodeStatus.FAILED,
                        "error": outcome.error,
                        "error_type": outcome.error_type,
                        "completed_at": now,
                        "pending_action": None,
                    }
                ),
            )
            if run.error is None:
                run.error, run.error_type = outcome.error, outcome.error_type
            logger.error(
                f"Node {node_id} failed for workstream_id={run.workstream.id}: {outcome.error}"
            )
            await self._record_activity(
                run,
                "node_failed",
                f"{node.label} failed: {outcome.error}",
                node_id=node_id,
                metadata={"error_type": outcome.error_type},
            )
        else:
            raise TypeError(f"Unsupported step outcome: {outcome!r}")

    # ------------------------------------------------------------------
    # Helpers
    async def _finish(self, run: _PlayRun) -> PlayExecutionOutcome:
        status = aggregate_status(run.graph, run.states)
        order = run.graph.topological_order()
        ordered = [run.states[n] for n in order if n in run.states]

        if status == PlayStatus.COMPLETED and run.dispatched:
            await self._record_activity(
                run,
                "play_completed",
                f"Completed play {run.graph.play.name}",
                metadata={"node_count": len(ordered)},
            )
        if status == PlayStatus.FAILED and run.error is None:
            failed = next(s for s in ordered if s.status == NodeStatus.FAILED)
            run.error, run.error_type = failed.error, failed.error_type

        stranded = {
            e.to_node_id
            for e in run.graph.play.edges
            if e.id in run.undecided_edges and e.to_node_id not in run.states
        }
        stalled = [
            n
            for n in order
            if n in stranded
            or (n in run.states and run.states[n].status == NodeStatus.PENDING)
        ]
        pending_actions = [
            s.pending_action
            for s in ordered
            if s.status == NodeStatus.BLOCKED and s.pending_action is not None
        ]
        if status == PlayStatus.AWAITING_INPUT and not pending_actions:
            logger.warning(
                f"Play {run.play_id} stalled for workstream_id={run.workstream.id}; "
                f"pending without a path: {stalled}"
            )

        return PlayExecutionOutcome(
            workstream_id=run.workstream.id,
            play_id=run.play_id,
            status=status,
            states=ordered,
            pending_actions=pending_actions,
            dispatched=run.dispatched,
            error=run.error,
            error_type=run.error_type,
            condition_errors=[f"{k}: {v}" for k, v in run.condition_errors.items()],
            stalled_node_ids=stalled,
            workstream=run.workstream,
        )

    def _note_condition_errors(self, run: _PlayRun, errors: Dict[str, str]) -> None:
        for edge_id, message in errors.items():
            if edge_id in run.condition_errors:
                continue
            run.condition_errors[edge_id] = message
            logger.error(
                f"Edge {edge_id} of play {run.play_id} is not traversable: {message}"
            )

    async def _attach(self, workstream: Workstream, play: Play) -> Workstream:
        """Merge the caller's workstream with the stored copy and persist it.

        Fields the play writes back through ``output_mapping`` keep their
        stored values; every other field is taken from the caller.
        """
        if workstream.play_id != play.id:
            workstream = workstream.with_fields(play_id=play.id)
        stored = await self._store.load_workstream(workstream.id)
        if stored is not None:
            written_back = {t for n in play.nodes for t in n.output_mapping.values()}
            kept = {
                k: v
                for k, v in stored.field_values().items()
                if k in written_back and v is not None
            }
            if kept:
                workstream = workstream.with_fields(**kept)
        if stored is None or stored.field_values() != workstream.field_values():
            await self._store.save_workstream(workstream)
        return workstream

    async def _require_workstream(self, workstream_id: str) -> Workstream:
        workstream = await self._store.load_workstream(workstream_id)
        if workstream is None:
            raise WorkstreamNotFound(workstream_id)
        return workstream

    async def _load_states(
        self, workstream_id: str, play_id: str
    ) -> Dict[str, NodeExecutionState]:
        states = await self._store.load_node_execution_states(workstream_id, play_id)
        return {s.node_id: s for s in states}

    async def _write(self, run: _PlayRun, state: NodeExecutionState) -> None:
        state = state.model_copy(update={"updated_at": utcnow()})
        await self._store.upsert_node_execution_state(state)
        run.states[state.node_id] = state

    async def _record_activity(
        self,
        run: _PlayRun,
        activity_type: str,
        description: str,
        node_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = ActivityEntry(
            workstream_id=run.workstream.id,
            play_id=run.play_id,
            node_id=node_id,
            activity_type=activity_type,
            description=description,
            actor_id=run.actor_id,
            metadata=metadata or {},
        )
        try:
            await self._store.append_activity(run.workstream.id, entry)
        except Exception:
            logger.exception(
                f"Failed to append {activity_type} activity for workstream_id={run.workstream.id}"
            )
