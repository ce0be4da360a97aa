"""
Collaborator interfaces and agent response handling.

The runtime depends only on these protocols; ClaudeAgentRunner,
AutoCommandRunner and DocsDeliverableGenerator are the default
implementations, and tests substitute stubs.

An agent may hand back a JSON string, an already-decoded object, or nothing.
to_raw_response() turns that into one of Json / Text / Empty once, at the
boundary, so callers match on a type instead of sniffing values.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol, Union, runtime_checkable


@runtime_checkable
class AgentRunner(Protocol):
    """Runs an agent persona against a context."""
    model: str

    async def run_agent(self, agent_id: str, context: dict) -> Any:
        ...

    async def execute_phase_workflow(self, phase: str, context: dict) -> dict:
        ...


@runtime_checkable
class CommandRunner(Protocol):
    """Runs a scripted (non-agent) phase command."""

    async def run_command(self, command_name: str, context: dict) -> Any:
        ...


@runtime_checkable
class DeliverableGenerator(Protocol):
    """Produces a deliverable document. Returns at least {content, path}."""

    async def generate(self, deliverable_type: str, context: dict) -> dict:
        ...


@dataclass(frozen=True)
class Json:
    value: Any


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Empty:
    pass


RawAgentResponse = Union[Json, Text, Empty]


@dataclass
class AgentParseError:
    """Agent output that could not be read as JSON."""
    message: str
    raw: str

    def to_dict(self) -> dict:
        return {"error": self.message, "raw": self.raw[:500]}


_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Return the body of the first ``` block, or text unchanged."""
    match = _FENCE.search(text)
    return match.group(1).strip() if match else text


def to_raw_response(raw: Any) -> RawAgentResponse:
    if raw is None:
        return Empty()
    if isinstance(raw, (Json, Text, Empty)):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return Empty()
        try:
            return Json(json.loads(strip_code_fence(text)))
        except json.JSONDecodeError:
            return Text(text)
    return Json(raw)


def resolve_payload(response: RawAgentResponse) -> dict | AgentParseError | None:
    """Collapse a response to a dict, a parse error, or None for no output.

    Non-object JSON (a list, a bare string) is wrapped as {"result": value}.
    """
    if isinstance(response, Empty):
        return None
    if isinstance(response, Text):
        return AgentParseError("Agent returned unparseable output", response.text)
    if isinstance(response.value, dict):
        return response.value
    return {"result": response.value}
