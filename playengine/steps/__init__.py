"""Step behaviours and the registry that dispatches to them."""

from __future__ import annotations

from .approval import ApprovalConfig, ApprovalGate
from .base import StepBehavior, interpolate
from .control import PassThrough
from .documents import (
    DocumentGeneration,
    DocumentRenderer,
    LoggingNotifier,
    Notification,
    Notifier,
)
from .registry import StepRegistry, default_registry
from .tasks import Collection, ManualTask

__all__ = [
    "ApprovalConfig",
    "ApprovalGate",
    "Collection",
    "DocumentGeneration",
    "DocumentRenderer",
    "LoggingNotifier",
    "ManualTask",
    "Notification",
    "Notifier",
    "PassThrough",
    "StepBehavior",
    "StepRegistry",
    "default_registry",
    "interpolate",
]
