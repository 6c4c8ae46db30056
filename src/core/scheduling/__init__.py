"""
Concurrency-limiting task scheduling.

Knows nothing about storage; any coroutine-producing operation can be
submitted with a priority.
"""

from .scheduler import DEFAULT_MAX_CONCURRENCY, ScheduledTask, TaskScheduler

__all__ = ["DEFAULT_MAX_CONCURRENCY", "ScheduledTask", "TaskScheduler"]
