"""Scripted phase commands (`auto-<phase>`)."""

import logging

from specflow.lib.errors import SpecflowError

logger = logging.getLogger(__name__)

AUTO_COMMAND_PREFIX = "auto-"

COMMAND_PHASE_MAP = {
    "analyst": "analyst",
    "analyze": "analyst",
    "pm": "pm",
    "plan": "pm",
    "architect": "architect",
    "architecture": "architect",
    "sm": "sm",
    "stories": "sm",
    "dev": "dev",
    "qa": "qa",
    "ux": "ux",
    "po": "po",
}


class UnknownCommandError(SpecflowError):
    pass


def resolve_auto_command_phase(command: str) -> str:
    """Map `auto-plan` style names to a phase."""
    if not isinstance(command, str) or not command.startswith(AUTO_COMMAND_PREFIX):
        raise UnknownCommandError(f"Unsupported command: {command}")

    phase = COMMAND_PHASE_MAP.get(command[len(AUTO_COMMAND_PREFIX):])
    if phase is None:
        raise UnknownCommandError(f"Unknown auto-command phase for: {command}")
    return phase


class AutoCommandRunner:
    """Default CommandRunner: runs the phase workflow an auto-command names."""

    def __init__(self, agent_runner):
        self.agent_runner = agent_runner

    async def run_command(self, command_name: str, context: dict) -> dict:
        phase = resolve_auto_command_phase(command_name)
        logger.info(f"[AGENT] {command_name} -> {phase} workflow")
        result = await self.agent_runner.execute_phase_workflow(phase, context)
        return result["response"]
