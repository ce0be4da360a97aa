"""
Agent command configuration.

Loads .specflow/agents.yaml to decide which CLI the agent runner invokes.
If no config file exists, the defaults below are used.

Templates support {variable} substitution from a context dict:
- {prompt}: the rendered prompt. If present in the template it is passed as a
  CLI argument, otherwise the prompt goes via stdin.
- {model}: the model identifier currently set on the runner. The runtime can
  swap it for the duration of a single tool call.
- {agent_id}: the persona being run.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

AGENTS_CONFIG_FILENAME = "agents.yaml"

DEFAULT_COMMANDS = {
    # Persona runs (every phase agent and the phase detector)
    "agent": "claude -p --output-format json --model {model}",
}

_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    commands: dict[str, str] = field(default_factory=lambda: DEFAULT_COMMANDS.copy())


def load_agents_config(state_dir: Path | None) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If state_dir is None or the file doesn't exist, returns defaults.
    """
    if state_dir is None:
        return AgentsConfig()

    config_path = state_dir / AGENTS_CONFIG_FILENAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"[CONFIG] Failed to parse {config_path}: {e}")
        return AgentsConfig()

    commands = DEFAULT_COMMANDS.copy()
    if isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, str):
                commands[key] = value
            else:
                logger.warning(f"[CONFIG] Ignoring non-string command '{key}' in {config_path}")
    return AgentsConfig(commands=commands)


@dataclass
class AgentCommand:
    """Result of building an agent command."""
    cmd: list[str]
    prompt_via_stdin: bool
    output_format: str | None  # "json" if --output-format json, else None

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def build_agent_command(
    config: AgentsConfig,
    name: str = "agent",
    context: dict[str, str] | None = None,
) -> AgentCommand:
    """Build the argv for a configured command with variable substitution.

    Raises:
        ValueError: If the command name is unknown.

    Example:
        >>> cmd = build_agent_command(AgentsConfig(), "agent", {"model": "opus", "prompt": "hi"})
        >>> cmd.cmd
        ['claude', '-p', '--output-format', 'json', '--model', 'opus']
        >>> cmd.prompt_via_stdin
        True
    """
    if name not in config.commands:
        raise ValueError(f"Unknown agent command: {name}")

    template = config.commands[name]
    prompt_via_stdin = "{prompt}" not in template

    output_format = None
    probe = shlex.split(re.sub(r'\{\w+\}', "X", template))
    for i, part in enumerate(probe):
        if part == "--output-format" and i + 1 < len(probe):
            output_format = probe[i + 1]
            break
        if part.startswith("--output-format="):
            output_format = part.split("=", 1)[1]
            break

    context = dict(context or {})
    prompt_value = context.pop("prompt", None)
    if prompt_value is not None:
        template = template.replace("{prompt}", _PLACEHOLDER)

    for key, value in context.items():
        template = template.replace(f"{{{key}}}", shlex.quote(str(value)))

    remaining = re.findall(r'\{(\w+)\}', template)
    if remaining:
        raise ValueError(f"Command '{name}' has unsubstituted variables: {remaining}")

    cmd = shlex.split(template)
    if prompt_value is not None:
        cmd = [prompt_value if arg == _PLACEHOLDER else arg for arg in cmd]

    return AgentCommand(cmd=cmd, prompt_via_stdin=prompt_via_stdin, output_format=output_format)
