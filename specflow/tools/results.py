"""Tool call results."""

import json
from dataclasses import dataclass
from typing import Any


@dataclass
class ToolResult:
    """What every call_tool() returns: success, error, or approval required.

    `payload` keeps the handler's return value for in-process callers; the
    text content is what goes over the wire.
    """
    text: str
    is_error: bool = False
    requires_approval: bool = False
    payload: Any = None

    @classmethod
    def success(cls, payload: Any) -> "ToolResult":
        text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, default=str)
        return cls(text=text, payload=payload)

    @classmethod
    def failure(cls, message: str, payload: Any = None) -> "ToolResult":
        if payload is not None:
            return cls(text=json.dumps(payload, indent=2, default=str), is_error=True, payload=payload)
        return cls(text=f"Error: {message}", is_error=True, payload={"error": message})

    @classmethod
    def approval_required(cls, tool: str, reason: str | None = None) -> "ToolResult":
        reason = reason or f"Tool '{tool}' requires approval before it can run."
        return cls(text=reason, requires_approval=True, payload={"requiresApproval": True, "reason": reason})

    def to_dict(self) -> dict:
        data = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            data["isError"] = True
        if self.requires_approval:
            data["requiresApproval"] = True
        return data
