"""
Persistence layer for workflow sessions.

This package holds the command result store and the run history
sink used by WorkflowSession.
"""

from .command_results import CommandResultStore
from .run_history import JSONRunHistory, RunHistorySink, format_last_run

__all__ = ['CommandResultStore', 'JSONRunHistory', 'RunHistorySink', 'format_last_run']
