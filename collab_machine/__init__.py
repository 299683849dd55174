"""
Collab Machine

A replicated state machine for collaborative issues and patches.
"""

import importlib.metadata

__version__ = importlib.metadata.version("collab-machine")

from .git import GitCollaborator, GitRepository
from .machine import Command, CommandResult, Machine, create_machine

__all__ = [
    "Command",
    "CommandResult",
    "GitCollaborator",
    "GitRepository",
    "Machine",
    "create_machine",
]
