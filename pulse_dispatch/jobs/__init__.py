"""
Background Jobs for CamerPulse Dispatch.

- escalation_cron: periodic escalation sweep for workflow executions
"""

from .escalation_cron import run_escalation_job

__all__ = ["run_escalation_job"]
