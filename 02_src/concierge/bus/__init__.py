"""Task bus module."""

from .correlation import PendingRequest, PendingRequests
from .task_bus import WILDCARD, ITaskBus, TaskBus, TaskEntry, TaskStatus, TopicHandler

__all__ = [
    "ITaskBus",
    "TaskBus",
    "TaskEntry",
    "TaskStatus",
    "TopicHandler",
    "WILDCARD",
    "PendingRequest",
    "PendingRequests",
]
