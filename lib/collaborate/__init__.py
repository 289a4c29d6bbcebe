"""Planner/reviewer collaboration workflow and CLI."""

from .config import CollabConfig, ConfigError, SessionSettings, AgentSettings, MemorySettings
from .console import Console
from .workflow import CollaborationWorkflow, WorkflowSummary, WorkflowAborted
from .cli import helper_main, collaborate_main

__all__ = [
    'CollabConfig', 'ConfigError', 'SessionSettings', 'AgentSettings', 'MemorySettings',
    'Console',
    'CollaborationWorkflow', 'WorkflowSummary', 'WorkflowAborted',
    'helper_main', 'collaborate_main',
]
