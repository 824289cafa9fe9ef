"""Steps that call outbound collaborators: documents and notifications."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol

from pydantic import BaseModel, Field

from ..contracts import (
    Blocked,
    Completed,
    CurrentUser,
    Failed,
    PendingAction,
    Workstream,
    utcnow,
)
from ..errors import InvalidResumption
from .base import StepBehavior, interpolate

logger = logging.getLogger(__name__)

DOCUMENT_UPLOAD_ACTION = "document_upload"


class DocumentRenderer(Protocol):
    """Document generation collaborator."""

    async def render(
        self, template_id: str, context: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Render ``template_id`` and return at least a ``document_id``."""


class Notifier(Protocol):
    """Notification dispatch collaborator."""

    async def send(
        self, recipients: List[str], subject: str, message: str, channel: str
    ) -> None:
        """Deliver a message to ``recipients``."""


class LoggingNotifier:
    """Notifier that only writes to the log."""

    async def send(
        self, recipients: List[str], subject: str, message: str, channel: str
    ) -> None:
        logger.info(f"[{channel}] to {', '.join(recipients) or '-'}: {subject} {message}")


class DocumentGenerationConfig(BaseModel):
    template_id: str
    output_name: Optional[str] = None
    output_format: Literal["pdf", "docx", "html"] = "pdf"


class DocumentGeneration(StepBehavior):
    step_type = "document_generation"

    def __init__(self, renderer: Optional[DocumentRenderer] = None) -> None:
        self._renderer = renderer

    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> Completed | Blocked | Failed:
        cfg = self._parse_config(DocumentGenerationConfig, config)
        fields = workstream.field_values()
        output_name = interpolate(cfg.output_name or cfg.template_id, fields)

        if self._renderer is None:
            return Blocked(
                pending_action=PendingAction(
                    type=DOCUMENT_UPLOAD_ACTION,
                    description=f"Upload document '{output_name}'",
                    details={
                        "template_id": cfg.template_id,
                        "output_name": output_name,
                        "output_format": cfg.output_format,
                    },
                )
            )

        document = await self._renderer.render(
            cfg.template_id,
            {
                "workstream": fields,
                "output_name": output_name,
                "output_format": cfg.output_format,
            },
        )
        if not document.get("document_id"):
            return Failed(
                error=f"Renderer returned no document_id for template {cfg.template_id}",
                error_type="DocumentGenerationError",
            )
        return Completed(
            output={
                "document_id": document["document_id"],
                "document_url": document.get("url"),
                "document_name": output_name,
                "output_format": cfg.output_format,
                "generated_at": utcnow().isoformat(),
            }
        )

    async def resume(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        pending_action: PendingAction,
        user_response: Dict[str, Any],
    ) -> Completed:
        self._expect_action(pending_action, DOCUMENT_UPLOAD_ACTION)
        document_id = user_response.get("document_id")
        if not isinstance(document_id, str) or not document_id:
            raise InvalidResumption("Document upload response requires a 'document_id'")
        return Completed(
            output={
                "document_id": document_id,
                "document_url": user_response.get("url"),
                "document_name": pending_action.details.get("output_name"),
                "uploaded_by": current_user.id if current_user else None,
            }
        )


class NotificationConfig(BaseModel):
    recipients: List[str] = Field(default_factory=list)
    subject: str = ""
    message: str
    channel: Literal["in_app", "email"] = "in_app"


class Notification(StepBehavior):
    step_type = "notification"

    def __init__(self, notifier: Optional[Notifier] = None) -> None:
        self._notifier = notifier or LoggingNotifier()

    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> Completed:
        cfg = self._parse_config(NotificationConfig, config)
        fields = workstream.field_values()
        recipients = [r for r in (interpolate(r, fields) for r in cfg.recipients) if r]
        subject = interpolate(cfg.subject, fields)
        message = interpolate(cfg.message, fields)

        await self._notifier.send(recipients, subject, message, cfg.channel)
        return Completed(
            output={
                "notified": recipients,
                "channel": cfg.channel,
                "sent_at": utcnow().isoformat(),
            }
        )
