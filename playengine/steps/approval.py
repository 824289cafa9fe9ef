"""Approval gate step: authorization decisions with optional auto-approval."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..conditions import evaluate_rules
from ..contracts import (
    Blocked,
    Completed,
    CurrentUser,
    EdgeCondition,
    PendingAction,
    Workstream,
    utcnow,
)
from ..errors import InvalidResumption
from .base import StepBehavior

logger = logging.getLogger(__name__)

APPROVAL_ACTION = "approval_decision"


class ApprovalConfig(BaseModel):
    """Configuration of an approval gate.

    The first entry of ``decision_options`` is the approving decision used
    when auto-approval rules match.
    """

    gate: int = 1
    approver_role: Optional[str] = None
    description: Optional[str] = None
    decision_options: List[str] = Field(default_factory=lambda: ["approved", "rejected"])
    auto_approve: List[EdgeCondition] = Field(default_factory=list)
    auto_approve_match: Literal["all", "any"] = "all"

    @field_validator("decision_options")
    @classmethod
    def _non_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("decision_options must not be empty")
        return v


class ApprovalGate(StepBehavior):
    step_type = "approval"

    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> Completed | Blocked:
        cfg = self._parse_config(ApprovalConfig, config)

        if cfg.auto_approve and evaluate_rules(
            cfg.auto_approve, workstream, match=cfg.auto_approve_match
        ):
            logger.info(
                f"Auto-approved gate {cfg.gate} for workstream_id={workstream.id}"
            )
            return Completed(
                output={
                    "decision": cfg.decision_options[0],
                    "gate": cfg.gate,
                    "auto_approved": True,
                    "decided_by": "system",
                    "decided_at": utcnow().isoformat(),
                }
            )

        approver = cfg.approver_role or "an approver"
        return Blocked(
            pending_action=PendingAction(
                type=APPROVAL_ACTION,
                description=cfg.description or f"Approval required from {approver}",
                details={
                    "gate": cfg.gate,
                    "approver_role": cfg.approver_role,
                    "decision_options": cfg.decision_options,
                },
            )
        )

    async def resume(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        pending_action: PendingAction,
        user_response: Dict[str, Any],
    ) -> Completed:
        cfg = self._parse_config(ApprovalConfig, config)
        self._expect_action(pending_action, APPROVAL_ACTION)

        decision = user_response.get("decision")
        if decision not in cfg.decision_options:
            raise InvalidResumption(
                f"Decision {decision!r} is not one of {cfg.decision_options}"
            )
        self._require_role(current_user, cfg.approver_role)

        return Completed(
            output={
                "decision": decision,
                "gate": cfg.gate,
                "reasoning": user_response.get("reasoning", ""),
                "auto_approved": False,
                "decided_by": current_user.id if current_user else None,
                "decided_at": utcnow().isoformat(),
            }
        )
