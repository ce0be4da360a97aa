"""Agent collaborators: persona runner, command runner, deliverable generator."""

from .base import AgentRunner, CommandRunner, DeliverableGenerator
from .claude import ClaudeAgentRunner
from .commands import AutoCommandRunner
from .deliverables import DocsDeliverableGenerator
from .personas import PersonaLibrary
from .quick_lane import QuickLaneExecutor

__all__ = [
    "AgentRunner",
    "AutoCommandRunner",
    "ClaudeAgentRunner",
    "CommandRunner",
    "DeliverableGenerator",
    "DocsDeliverableGenerator",
    "PersonaLibrary",
    "QuickLaneExecutor",
]
