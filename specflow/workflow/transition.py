"""
Phase transition pipeline.

A transition runs a fixed sequence:
1. Merge the caller's context with the deliverables the target phase builds on.
2. Run the target phase's agent (or scripted command) and resolve its output.
3. Update project state and save any deliverable the agent produced.
4. Commit the phase change on the store.

Nothing is committed unless steps 1-3 succeed. A failing or unreadable
agent comes back as a failure result with shouldTransition False; side
effects the agent already had (files it wrote) are not undone.

The machine holds its hooks on the instance. There is no module-level
state, so several projects can run side by side in one process.
"""

import copy
import logging
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Optional

from specflow.agents.base import AgentParseError, resolve_payload, to_raw_response
from specflow.lib.constants import GATED_PHASES, PHASE_DETECTOR_AGENT, PHASES, phase_agent
from specflow.lib.errors import DependenciesNotBound, TransitionError
from specflow.lib.history import format_conversation
from specflow.workflow.context import preserve_context
from specflow.workflow.fsm import PhaseFSM

logger = logging.getLogger(__name__)

REQUIRED_HOOKS = ("save_deliverable", "load_phase_context")


@dataclass
class TransitionHooks:
    """Work the machine delegates to collaborators."""
    trigger_agent: Optional[Callable[[str, dict], Awaitable[Any]]] = None
    trigger_command: Optional[Callable[[str, dict], Awaitable[Any]]] = None
    update_project_state: Optional[Callable[[dict], Awaitable[Any]]] = None
    save_deliverable: Optional[Callable[..., Awaitable[Any]]] = None  # (type, content, metadata, phase)
    load_phase_context: Optional[Callable[[str], Awaitable[dict]]] = None


class PhaseTransitionMachine:
    """Validates and executes phase transitions for one project store."""

    def __init__(self, store):
        self.store = store
        self.hooks: TransitionHooks | None = None
        self.fsm = PhaseFSM(store.current_phase, on_transition=self._commit)

    def bind_dependencies(self, hooks: TransitionHooks | None = None, **overrides) -> None:
        """Attach collaborator hooks.

        The first bind must supply save_deliverable and load_phase_context;
        later binds may replace individual hooks.

        Raises:
            DependenciesNotBound: if a required hook is missing on first bind
        """
        merged = copy.copy(hooks) if hooks is not None else TransitionHooks()
        for name, value in overrides.items():
            if name not in {f.name for f in fields(TransitionHooks)}:
                raise TypeError(f"Unknown transition hook: {name}")
            setattr(merged, name, value)

        if self.hooks is not None:
            for f in fields(TransitionHooks):
                if getattr(merged, f.name) is None:
                    setattr(merged, f.name, getattr(self.hooks, f.name))

        missing = [name for name in REQUIRED_HOOKS if getattr(merged, name) is None]
        if missing:
            raise DependenciesNotBound(f"Missing required transition hooks: {', '.join(missing)}")

        self.hooks = merged

    @property
    def is_bound(self) -> bool:
        return self.hooks is not None

    def _require_bound(self) -> TransitionHooks:
        if self.hooks is None:
            raise DependenciesNotBound("Transition hooks used before bind_dependencies()")
        return self.hooks

    async def _commit(self, from_phase: str, to_phase: str, event) -> None:
        await self.store.transition_phase(to_phase, event.kwargs.get("context") or {})

    def _failure(self, from_phase: str, to_phase: str, kind: str, message: str, **extra) -> dict:
        logger.warning(f"[PHASE] {from_phase} -> {to_phase} not committed ({kind}): {message}")
        return {
            "success": False,
            "from": from_phase,
            "to": to_phase,
            "errorType": kind,
            "error": message,
            "shouldTransition": False,
            "currentPhase": self.store.current_phase,
            **extra,
        }

    async def execute_transition(self, from_phase: str, to_phase: str, context: dict | None = None) -> dict | None:
        """Run the transition pipeline.

        Returns:
            None if to_phase is empty, otherwise a result dict with
            success/shouldTransition set.

        Raises:
            DependenciesNotBound: before bind_dependencies()
            TransitionError: to_phase is not a known phase
            StateWriteError: the final commit could not be persisted
        """
        if not to_phase:
            return None
        hooks = self._require_bound()
        if to_phase not in PHASES:
            raise TransitionError(from_phase, to_phase, f"unknown phase '{to_phase}'")

        self.fsm.sync(self.store.current_phase)
        merged = await preserve_context(from_phase, to_phase, context, hooks.load_phase_context)

        command = merged.get("command")
        agent_id = phase_agent(to_phase)
        try:
            if command and hooks.trigger_command:
                raw = await hooks.trigger_command(command, merged)
            elif hooks.trigger_agent:
                raw = await hooks.trigger_agent(agent_id, merged)
            elif hooks.trigger_command:
                command = f"auto-{to_phase}"
                raw = await hooks.trigger_command(command, merged)
            else:
                raw = None
        except Exception as e:
            return self._failure(from_phase, to_phase, "agent", str(e))

        payload = resolve_payload(to_raw_response(raw))
        if isinstance(payload, AgentParseError):
            return self._failure(from_phase, to_phase, "parse", payload.message, details=payload.to_dict())

        saved = None
        try:
            if hooks.update_project_state:
                updates = {"lastAgent": command or agent_id}
                if payload is not None and isinstance(payload.get("nextSteps"), str):
                    updates["nextSteps"] = payload["nextSteps"]
                await hooks.update_project_state(updates)

            deliverable = payload.get("deliverable") if payload else None
            if isinstance(deliverable, dict) and deliverable.get("type"):
                saved = await hooks.save_deliverable(
                    deliverable["type"],
                    deliverable.get("content"),
                    deliverable.get("metadata") or {},
                    to_phase,
                )
        except Exception as e:
            return self._failure(from_phase, to_phase, "pipeline", str(e))

        await self.fsm.advance(to=to_phase, context=merged)
        transition = self.store.get_state()["phaseHistory"][-1]

        logger.info(f"[PHASE] Transitioned {from_phase} -> {to_phase} via {command or agent_id}")
        return {
            "success": True,
            "from": from_phase,
            "to": to_phase,
            "agent": command or agent_id,
            "result": payload,
            "deliverable": saved,
            "context": merged,
            "transition": transition,
            "shouldTransition": True,
        }

    async def handle_transition(self, to_phase: str, context: dict | None = None, validated: bool = False) -> dict | None:
        """Transition from the current phase, requiring sign-off for gated phases.

        Raises:
            TransitionError: to_phase is gated and validated is False
        """
        from_phase = self.store.current_phase
        if to_phase in GATED_PHASES and not validated:
            raise TransitionError(from_phase, to_phase, "requires user validation")
        return await self.execute_transition(from_phase, to_phase, context)

    async def check_transition(self, conversation: list, user_message: str, current_phase: str) -> dict | None:
        """Ask the phase detector whether the conversation has moved on.

        Never commits. Returns None when the detector says nothing usable,
        {error, shouldTransition: False} when the detector failed or its
        output could not be read.
        """
        hooks = self._require_bound()
        if hooks.trigger_agent is None:
            return None

        try:
            raw = await hooks.trigger_agent(PHASE_DETECTOR_AGENT, {
                "conversation": copy.deepcopy(conversation),
                "history": format_conversation(conversation),
                "userMessage": user_message,
                "currentPhase": current_phase,
                "availablePhases": list(PHASES),
            })
        except Exception as e:
            logger.warning(f"[PHASE] Phase detector failed: {e}")
            return {"error": str(e), "shouldTransition": False}

        payload = resolve_payload(to_raw_response(raw))
        if isinstance(payload, AgentParseError):
            logger.warning(f"[PHASE] Phase detector output unreadable: {payload.message}")
            return {"error": payload.message, "shouldTransition": False}
        if payload is None:
            return None

        detected = payload.get("detected_phase")
        if detected not in PHASES:
            return None

        confidence = payload.get("confidence")
        if not isinstance(confidence, (int, float)):
            confidence = 0.5
        should_transition = payload.get("shouldTransition")
        if not isinstance(should_transition, bool):
            should_transition = detected != current_phase

        result = {
            "detected_phase": detected,
            "confidence": float(confidence),
            "shouldTransition": should_transition,
        }
        if payload.get("reasoning"):
            result["reasoning"] = payload["reasoning"]
        return result
