"""Step executor: runs a single node for a single workstream."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from .constants import DEFAULT_STEP_TIMEOUT_SECONDS
from .contracts import (
    Blocked,
    Completed,
    CurrentUser,
    Failed,
    NodeExecutionState,
    NodeStatus,
    PendingAction,
    StepExecutionOutcome,
    WorkflowNode,
    Workstream,
)
from .errors import InvalidResumption, UnknownStepType
from .inputs import InputContext, resolve_inputs
from .steps import StepRegistry, default_registry

logger = logging.getLogger(__name__)


class StepExecutor:
    """Dispatches a node to the behaviour registered for its ``step_type``.

    Behaviour errors never escape ``execute_step``: an unknown step type, an
    exception or a timeout is returned as a ``Failed`` outcome carrying the
    error class in ``error_type``.
    """

    def __init__(
        self,
        registry: StepRegistry | None = None,
        timeout: Optional[float] = DEFAULT_STEP_TIMEOUT_SECONDS,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self._timeout = timeout

    async def _run(self, node: WorkflowNode, coro) -> StepExecutionOutcome:
        try:
            if self._timeout:
                return await asyncio.wait_for(coro, self._timeout)
            return await coro
        except asyncio.TimeoutError:
            logger.error(f"Step {node.id} ({node.step_type}) timed out after {self._timeout}s")
            return Failed(
                error=f"Step {node.id} timed out after {self._timeout}s",
                error_type="StepTimeout",
            )

    @staticmethod
    def _context(
        node: WorkflowNode,
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        previous_outputs: Optional[Mapping[str, Mapping[str, Any]]],
        play_config: Optional[Mapping[str, Any]],
    ) -> InputContext:
        return InputContext(
            workstream=workstream,
            user=current_user,
            previous_outputs=previous_outputs or {},
            play_config=play_config or {},
            execution={
                "workstream_id": workstream.id,
                "play_id": node.play_id,
                "node_id": node.id,
            },
        )

    @staticmethod
    def _bind(node: WorkflowNode, outcome: StepExecutionOutcome) -> StepExecutionOutcome:
        if isinstance(outcome, Blocked) and outcome.pending_action.node_id != node.id:
            action = outcome.pending_action.model_copy(update={"node_id": node.id})
            return Blocked(pending_action=action)
        return outcome

    async def execute_step(
        self,
        node: WorkflowNode,
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        prior_state: Optional[NodeExecutionState] = None,
        previous_outputs: Optional[Mapping[str, Mapping[str, Any]]] = None,
        play_config: Optional[Mapping[str, Any]] = None,
    ) -> StepExecutionOutcome:
        """Run ``node`` once.

        Config values bound to a runtime source are resolved first against
        the workstream, the outputs of completed nodes, the play config and
        the acting user.
        """
        if prior_state is not None and prior_state.status == NodeStatus.COMPLETED:
            return Completed(output=prior_state.output)
        if prior_state is not None and prior_state.status == NodeStatus.RUNNING:
            logger.warning(
                f"Re-dispatching interrupted step {node.id} for workstream_id={workstream.id}"
            )

        try:
            behavior = self.registry.get(node.step_type)
        except UnknownStepType as exc:
            logger.error(f"Cannot dispatch node {node.id}: {exc}")
            return Failed(error=str(exc), error_type=type(exc).__name__)

        logger.debug(f"Executing node {node.id} ({node.step_type}) for workstream_id={workstream.id}")
        context = self._context(node, workstream, current_user, previous_outputs, play_config)
        try:
            config = resolve_inputs(node.config, context)
            outcome = await self._run(
                node, behavior.execute(config, workstream, current_user)
            )
        except Exception as exc:
            logger.exception(f"Step {node.id} ({node.step_type}) raised")
            return Failed(error=str(exc), error_type=type(exc).__name__)
        return self._bind(node, outcome)

    async def resume_step_execution(
        self,
        node: WorkflowNode,
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        pending_action: PendingAction,
        user_response: Mapping[str, Any],
        previous_outputs: Optional[Mapping[str, Mapping[str, Any]]] = None,
        play_config: Optional[Mapping[str, Any]] = None,
    ) -> StepExecutionOutcome:
        """Feed external input to a blocked node.

        Raises:
            InvalidResumption: The pending action belongs to another node or
                the behaviour rejects ``user_response``.
            InvalidInput: A bound config value cannot be resolved.
            MalformedPlay: The node config is invalid for its step type.
            UnknownStepType: The node's behaviour is no longer registered.
        """
        if pending_action.node_id not in (None, node.id):
            raise InvalidResumption(
                f"Pending action for node {pending_action.node_id} cannot resume node {node.id}"
            )
        if not isinstance(user_response, Mapping):
            raise InvalidResumption("User response must be a mapping")

        behavior = self.registry.get(node.step_type)
        context = self._context(node, workstream, current_user, previous_outputs, play_config)
        config = resolve_inputs(node.config, context)
        outcome = await self._run(
            node,
            behavior.resume(
                config, workstream, current_user, pending_action, dict(user_response)
            ),
        )
        return self._bind(node, outcome)
