"""Text-report action sets exposed to agents."""

from .anchors import ANCHOR_ACTIONS, AnchorActionSet
from .tasks import TASK_ACTIONS, TaskActionSet

__all__ = ["ANCHOR_ACTIONS", "AnchorActionSet", "TASK_ACTIONS", "TaskActionSet"]
