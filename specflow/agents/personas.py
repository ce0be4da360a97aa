"""
Agent personas.

A persona is a markdown file named <agent_id>.md. Its configuration sits in
the first ```yaml block: `agent` (id, name, title, whenToUse), `persona`
(role, style, identity, focus, core_principles) and optional
`dependencies`. The whole file is also handed to the model verbatim.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from specflow.lib.errors import AgentNotFound
from specflow.lib.history import format_conversation, format_requirements

logger = logging.getLogger(__name__)

_YAML_BLOCK = re.compile(r"```yaml\n(.*?)\n```", re.DOTALL)


@dataclass
class Persona:
    id: str
    path: Path
    content: str
    config: dict = field(default_factory=dict)

    @property
    def agent(self) -> dict:
        return self.config.get("agent") or {}

    @property
    def persona(self) -> dict:
        return self.config.get("persona") or {}

    @property
    def dependencies(self) -> dict:
        return self.config.get("dependencies") or {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "path": str(self.path),
            "content": self.content,
            "config": self.config,
            "agent": self.agent,
            "persona": self.persona,
            "dependencies": self.dependencies,
        }


class PersonaLibrary:
    """Loads personas from one directory, caching parsed files."""

    def __init__(self, agents_dir: Path):
        self.agents_dir = Path(agents_dir)
        self._cache: dict[str, Persona] = {}

    def load(self, agent_id: str) -> Persona:
        """
        Raises:
            AgentNotFound: no <agent_id>.md in the directory
        """
        if agent_id in self._cache:
            return self._cache[agent_id]

        path = self.agents_dir / f"{agent_id}.md"
        if not path.is_file():
            raise AgentNotFound(agent_id)

        content = path.read_text(encoding="utf-8")
        config = {}
        match = _YAML_BLOCK.search(content)
        if match:
            try:
                config = yaml.safe_load(match.group(1)) or {}
            except yaml.YAMLError as e:
                logger.warning(f"[AGENT] Ignoring bad YAML in {path.name}: {e}")
            if not isinstance(config, dict):
                config = {}

        persona = Persona(id=agent_id, path=path, content=content, config=config)
        self._cache[agent_id] = persona
        logger.debug(f"[AGENT] Loaded persona {agent_id}")
        return persona

    def list_agents(self) -> list[dict]:
        if not self.agents_dir.is_dir():
            return []
        agents = []
        for path in sorted(self.agents_dir.glob("*.md")):
            persona = self.load(path.stem)
            agents.append({
                "id": persona.id,
                "name": persona.agent.get("name", persona.id),
                "title": persona.agent.get("title", ""),
                "whenToUse": persona.agent.get("whenToUse", ""),
            })
        return agents


def build_system_prompt(persona: Persona) -> str:
    """Persona summary followed by the full definition."""
    info = persona.agent
    traits = persona.persona

    lines = [f"You are {info.get('name') or persona.id}, a {info.get('title') or 'specflow agent'}.", ""]
    for key, label in (("role", "Role"), ("identity", "Identity"), ("style", "Style"), ("focus", "Focus")):
        if traits.get(key):
            lines.append(f"**{label}**: {traits[key]}")

    principles = traits.get("core_principles")
    if isinstance(principles, list) and principles:
        lines.append("")
        lines.append("**Core Principles**:")
        lines.extend(f"- {principle}" for principle in principles)

    lines.append("")
    lines.append("---")
    lines.append("")
    lines.append("Full Agent Definition:")
    lines.append(persona.content)
    return "\n".join(lines)


def build_context_message(context: dict) -> str:
    """Render the parts of a context dict an agent reads."""
    sections = []
    if context.get("task"):
        sections.append(f"Task: {context['task']}\n")
    if isinstance(context.get("conversation"), list):
        history = format_conversation(context["conversation"])
        if history:
            sections.append(history)
    if isinstance(context.get("requirements"), dict):
        requirements = format_requirements(context["requirements"])
        if requirements:
            sections.append(requirements)
    if context.get("userInput"):
        sections.append(f"User Input:\n{context['userInput']}\n")
    if context.get("userMessage"):
        sections.append(f"User Message:\n{context['userMessage']}\n")

    for key in ("brief", "prd", "architecture", "epic", "story"):
        if context.get(key):
            sections.append(f"## Previous {key}\n{context[key]}\n")

    if context.get("additionalContext"):
        sections.append(f"Additional Context:\n{context['additionalContext']}\n")

    return "\n".join(sections) if sections else "Please proceed with your role."
