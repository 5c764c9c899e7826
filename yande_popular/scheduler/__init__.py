"""Scheduler package exports."""

from .apsched_adapter import JOB_ID, PollScheduler

__all__ = ["JOB_ID", "PollScheduler"]
