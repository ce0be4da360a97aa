"""
Conversation formatting for agent prompts.

Agents receive a trimmed transcript rather than the full history; the
phase transition context already carries the deliverables they need.
"""

__all__ = ["format_conversation", "format_requirements"]

DEFAULT_TAIL = 5


def format_conversation(conversation: list | None, tail: int = DEFAULT_TAIL) -> str:
    """
    Format the last `tail` conversation messages for an agent prompt.

    Args:
        conversation: Message dicts with role, content and optional phase
        tail: How many of the most recent messages to keep

    Returns:
        Markdown bullet list, or "" when there is nothing to show
    """
    if not conversation:
        return ""

    lines = []
    for msg in conversation[-tail:]:
        if not isinstance(msg, dict):
            continue
        role = msg.get("role", "user")
        phase = msg.get("phase")
        prefix = f"{role} ({phase})" if phase else role
        lines.append(f"- {prefix}: {msg.get('content', '')}")

    if not lines:
        return ""
    return "Conversation History:\n" + "\n".join(lines) + "\n"


def format_requirements(requirements: dict | None) -> str:
    """Format a requirements mapping as a key/value list."""
    if not requirements:
        return ""

    lines = ["Requirements:"]
    for key, value in requirements.items():
        lines.append(f"- {key}: {value}")
    return "\n".join(lines) + "\n"
