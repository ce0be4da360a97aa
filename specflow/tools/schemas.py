"""
Tool table.

Every tool the runtime exposes, with its JSON Schema input shape. Arguments
are validated against inputSchema before the handler runs; extra properties
are allowed so newer callers keep working.
"""

from specflow.lib.constants import DELIVERABLE_TYPES, LANES, PHASES

_phase = {"type": "string", "enum": list(PHASES)}
_lane = {"type": "string", "enum": list(LANES)}
_context = {"type": "object", "description": "Free-form context passed through to agents"}


def _schema(properties: dict | None = None, required: list[str] | None = None) -> dict:
    return {"type": "object", "properties": properties or {}, "required": required or []}


TOOLS = [
    {
        "name": "get_project_context",
        "description": "Current project state, recent conversation and deliverables.",
        "inputSchema": _schema({"includeFullHistory": {"type": "boolean"}}),
    },
    {
        "name": "detect_phase",
        "description": "Ask the phase detector which phase the latest message belongs to. Never changes state.",
        "inputSchema": _schema(
            {
                "userMessage": {"type": "string"},
                "conversationHistory": {"type": "array", "items": {"type": "object"}},
            },
            ["userMessage"],
        ),
    },
    {
        "name": "load_agent_persona",
        "description": "Load an agent persona by id, or the persona for a phase.",
        "inputSchema": _schema({"agentId": {"type": "string"}, "phase": _phase}),
    },
    {
        "name": "transition_phase",
        "description": "Run the target phase's agent and move the project to that phase.",
        "inputSchema": _schema(
            {"toPhase": _phase, "context": _context, "userValidated": {"type": "boolean"}},
            ["toPhase"],
        ),
    },
    {
        "name": "generate_deliverable",
        "description": "Write a deliverable document and record it for the current phase.",
        "inputSchema": _schema(
            {"type": {"type": "string", "enum": list(DELIVERABLE_TYPES)}, "context": _context},
            ["type"],
        ),
    },
    {
        "name": "record_decision",
        "description": "Record a project decision; replaces any earlier value for the key.",
        "inputSchema": _schema(
            {"key": {"type": "string", "minLength": 1}, "value": {}, "rationale": {"type": "string"}},
            ["key", "value"],
        ),
    },
    {
        "name": "add_conversation_message",
        "description": "Append a message to the conversation log.",
        "inputSchema": _schema(
            {"role": {"type": "string", "enum": ["user", "assistant"]}, "content": {"type": "string"}},
            ["role", "content"],
        ),
    },
    {
        "name": "get_project_summary",
        "description": "Counts and identifiers for the project.",
        "inputSchema": _schema(),
    },
    {
        "name": "list_agents",
        "description": "Available agent personas.",
        "inputSchema": _schema(),
    },
    {
        "name": "execute_phase_workflow",
        "description": "Run the agent that owns a phase without changing phase.",
        "inputSchema": _schema({"phase": _phase, "context": _context}, ["phase"]),
    },
    {
        "name": "select_development_lane",
        "description": "Choose quick or complex lane for a request and record the decision.",
        "inputSchema": _schema(
            {"userMessage": {"type": "string"}, "context": _context, "forceLane": _lane},
            ["userMessage"],
        ),
    },
    {
        "name": "execute_workflow",
        "description": "Select a lane, then run the quick lane or the planning agents.",
        "inputSchema": _schema(
            {"userRequest": {"type": "string"}, "context": _context, "forceLane": _lane},
            ["userRequest"],
        ),
    },
    {
        "name": "record_review_outcome",
        "description": "Append a review checkpoint outcome.",
        "inputSchema": _schema(
            {"checkpoint": {"type": "string", "minLength": 1}, "details": {"type": "object"}},
            ["checkpoint"],
        ),
    },
    {
        "name": "get_story",
        "description": "Structured story by id, or the most recent one.",
        "inputSchema": _schema({"storyId": {"type": "string"}}),
    },
    {
        "name": "record_drawbridge_ingestion",
        "description": "Record a Drawbridge review pack ingestion.",
        "inputSchema": _schema({"ingestion": {"type": "object"}}, ["ingestion"]),
    },
    {
        "name": "get_drawbridge_review_queue",
        "description": "Open Drawbridge tasks across ingestions, newest first.",
        "inputSchema": _schema({"includeResolved": {"type": "boolean"}}),
    },
    {
        "name": "record_shadcn_installation",
        "description": "Record shadcn components installed into the project.",
        "inputSchema": _schema({"installation": {"type": "object"}}, ["installation"]),
    },
    {
        "name": "apply_tweakcn_palette",
        "description": "Record a tweakcn palette and make it active.",
        "inputSchema": _schema({"palette": {"type": "object"}}, ["palette"]),
    },
    {
        "name": "reset_project",
        "description": "Delete all project state and start over with a new project id.",
        "inputSchema": _schema({"confirm": {"type": "boolean", "const": True}}, ["confirm"]),
    },
]

TOOL_SCHEMAS = {tool["name"]: tool["inputSchema"] for tool in TOOLS}
