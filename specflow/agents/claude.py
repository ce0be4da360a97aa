"""
Claude agent runner.

Runs a persona through the claude CLI:
    claude -p --output-format json --model <model>   (prompt on stdin)

The CLI wraps its answer as {"type": "result", "result": "..."}; the inner
text is returned as-is and resolved by the caller (see agents.base). The
command template comes from agents.yaml, so another CLI can be dropped in.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

from specflow.lib.agents_config import AgentsConfig, build_agent_command
from specflow.lib.constants import phase_agent
from specflow.lib.errors import AgentRunError

from .personas import PersonaLibrary, build_context_message, build_system_prompt

logger = logging.getLogger(__name__)


class ClaudeAgentRunner:
    """Default AgentRunner. `model` may be swapped per call by the runtime."""

    def __init__(
        self,
        personas: PersonaLibrary,
        agents_config: AgentsConfig | None = None,
        model: str = "sonnet",
        timeout: int = 300,
        cwd: Path | None = None,
    ):
        self.personas = personas
        self.agents_config = agents_config or AgentsConfig()
        self.model = model
        self.timeout = timeout
        self.cwd = cwd

    def build_prompt(self, agent_id: str, context: dict) -> str:
        persona = self.personas.load(agent_id)
        return f"{build_system_prompt(persona)}\n\n---\n\n{build_context_message(context)}"

    async def run_agent(self, agent_id: str, context: dict) -> str:
        """Run one persona and return the text of its answer.

        Raises:
            AgentNotFound: unknown persona
            AgentRunError: the CLI could not start, timed out or exited non-zero
        """
        prompt = await asyncio.to_thread(self.build_prompt, agent_id, context)
        command = build_agent_command(
            self.agents_config, "agent", {"model": self.model, "prompt": prompt, "agent_id": agent_id},
        )
        stdin_input = command.get_stdin_input(prompt)

        # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

        logger.info(f"[AGENT] Running {agent_id} with model {self.model}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command.cmd,
                stdin=asyncio.subprocess.PIPE if stdin_input is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd) if self.cwd else None,
                env=env,
            )
        except FileNotFoundError as e:
            raise AgentRunError(agent_id, f"command not found: {command.cmd[0]}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_input.encode() if stdin_input is not None else None),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise AgentRunError(agent_id, f"timed out after {self.timeout}s") from e

        stdout_text = stdout.decode(errors="replace").strip()
        if process.returncode != 0:
            stderr_text = stderr.decode(errors="replace").strip()
            raise AgentRunError(agent_id, f"exit code {process.returncode}: {stderr_text[:200]}")

        if command.output_format == "json":
            return self._unwrap(agent_id, stdout_text)
        return stdout_text

    @staticmethod
    def _unwrap(agent_id: str, stdout_text: str) -> str:
        try:
            wrapper = json.loads(stdout_text)
        except json.JSONDecodeError:
            logger.warning(f"[AGENT] {agent_id}: CLI output was not a JSON wrapper")
            return stdout_text
        if isinstance(wrapper, dict) and "result" in wrapper:
            inner = wrapper["result"]
            return inner if isinstance(inner, str) else json.dumps(inner)
        return stdout_text

    async def execute_phase_workflow(self, phase: str, context: dict) -> dict:
        """Run the agent that owns phase."""
        agent_id = phase_agent(phase)
        response = await self.run_agent(agent_id, {**context, "phase": phase})
        return {"agentId": agent_id, "phase": phase, "response": response}
