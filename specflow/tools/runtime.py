"""
Orchestrator runtime.

The one entry point a tool-calling harness talks to. call_tool() maps a tool
name to a handler that reads or writes the state store, runs the lane
selector, or drives the phase transition machine. Every call returns a
ToolResult; exceptions stop here.

Call sequence:
    ensure_ready -> before_call -> approval check -> (model override) dispatch -> after_call

Dispatch runs under a per-runtime asyncio.Lock, so calls on one runtime
never interleave their writes. Two runtimes (or processes) on the same
project directory are not coordinated.
"""

import asyncio
import copy
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from specflow.agents.base import AgentParseError, resolve_payload, to_raw_response
from specflow.agents.claude import ClaudeAgentRunner
from specflow.agents.commands import AutoCommandRunner
from specflow.agents.deliverables import DocsDeliverableGenerator
from specflow.agents.personas import PersonaLibrary
from specflow.agents.quick_lane import QuickLaneExecutor
from specflow.lib.agents_config import load_agents_config
from specflow.lib.config import OrchestratorConfig, load_config, resolve_agents_dir
from specflow.lib.constants import phase_agent
from specflow.lib.errors import SpecflowError, UnknownToolError
from specflow.lib.validate import validate_tool_args
from specflow.state.store import ProjectStateStore
from specflow.workflow.lanes import get_decision_history, plan_phase_progression, select_lane_with_log
from specflow.workflow.transition import PhaseTransitionMachine, TransitionHooks

from .results import ToolResult
from .schemas import TOOL_SCHEMAS, TOOLS

logger = logging.getLogger(__name__)

COMPLEX_WORKFLOW_PHASES = ("analyst", "pm", "architect", "sm")


@dataclass
class StateBridge:
    """Observability hooks around a tool call."""
    before_call: Optional[Callable[[str, dict], Awaitable[Any]]] = None
    after_call: Optional[Callable[[str, dict, ToolResult], Awaitable[Any]]] = None


@dataclass
class CallToolOptions:
    # (tool, args) -> bool, or {"approved": bool, "reason": str}
    approval_checker: Optional[Callable[[str, dict], Awaitable[Any]]] = None
    state_bridge: Optional[StateBridge] = None
    # (tool, args) -> model id or None; may be sync or async
    model_router: Optional[Callable[[str, dict], Any]] = None


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class OrchestratorRuntime:
    """Tool dispatcher for one project directory."""

    def __init__(
        self,
        project_path: Path,
        config: OrchestratorConfig | None = None,
        agent_runner=None,
        command_runner=None,
        deliverable_generator=None,
        quick_lane=None,
    ):
        self.project_path = Path(project_path)
        self.config = config or load_config(self.project_path)
        self.agent_runner = agent_runner
        self.command_runner = command_runner
        self.deliverable_generator = deliverable_generator
        self.quick_lane = quick_lane

        self.store: ProjectStateStore | None = None
        self.personas = PersonaLibrary(self.config.agents_dir or resolve_agents_dir(self.project_path, None))
        self.machine: PhaseTransitionMachine | None = None
        self._lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._ready = False

        self._handlers: dict[str, Callable[[dict], Awaitable[Any]]] = {
            "get_project_context": self._get_project_context,
            "detect_phase": self._detect_phase,
            "load_agent_persona": self._load_agent_persona,
            "transition_phase": self._transition_phase,
            "generate_deliverable": self._generate_deliverable,
            "record_decision": self._record_decision,
            "add_conversation_message": self._add_conversation_message,
            "get_project_summary": self._get_project_summary,
            "list_agents": self._list_agents,
            "execute_phase_workflow": self._execute_phase_workflow,
            "select_development_lane": self._select_development_lane,
            "execute_workflow": self._execute_workflow,
            "record_review_outcome": self._record_review_outcome,
            "get_story": self._get_story,
            "record_drawbridge_ingestion": self._record_drawbridge_ingestion,
            "get_drawbridge_review_queue": self._get_drawbridge_review_queue,
            "record_shadcn_installation": self._record_shadcn_installation,
            "apply_tweakcn_palette": self._apply_tweakcn_palette,
            "reset_project": self._reset_project,
        }

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def ensure_ready(self) -> None:
        """Build the store and collaborators and bind the transition hooks, once."""
        async with self._init_lock:
            if not self._ready:
                await self._build()

    async def _build(self) -> None:
        store = ProjectStateStore(self.project_path, self.config)
        await store.initialize()

        if self.agent_runner is None:
            self.agent_runner = ClaudeAgentRunner(
                self.personas,
                agents_config=load_agents_config(self.config.state_dir),
                model=self.config.llm_model,
                timeout=self.config.agent_timeout,
                cwd=self.project_path,
            )
        if self.command_runner is None:
            self.command_runner = AutoCommandRunner(self.agent_runner)
        if self.deliverable_generator is None:
            self.deliverable_generator = DocsDeliverableGenerator(self.project_path, self.config.docs_dir)
        if self.quick_lane is None:
            self.quick_lane = QuickLaneExecutor(self.agent_runner, self.project_path, self.config.docs_dir)

        machine = PhaseTransitionMachine(store)
        machine.bind_dependencies(TransitionHooks(
            trigger_agent=self.agent_runner.run_agent,
            trigger_command=self.command_runner.run_command,
            update_project_state=store.update_state,
            save_deliverable=self._save_deliverable,
            load_phase_context=self._load_phase_context,
        ))

        self.store = store
        self.machine = machine
        self._ready = True
        logger.info(f"[RUNTIME] Ready for {self.project_path} (phase {store.current_phase})")

    async def _save_deliverable(self, deliverable_type: str, content: Any, metadata: dict, phase: str) -> dict:
        return await self.store.store_deliverable(deliverable_type, content, metadata, phase=phase)

    async def _load_phase_context(self, phase: str) -> dict:
        return self.store.get_phase_deliverables(phase)

    def list_tools(self) -> list[dict]:
        return copy.deepcopy(TOOLS)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, args: dict | None = None, options: CallToolOptions | None = None) -> ToolResult:
        """Run one tool. Always returns a ToolResult, never raises."""
        args = args or {}
        options = options or CallToolOptions()
        bridge = options.state_bridge or StateBridge()

        try:
            await self.ensure_ready()

            if bridge.before_call:
                await bridge.before_call(name, args)

            result = await self._run(name, args, options)
        except Exception as e:
            logger.error(f"[RUNTIME] {name} failed: {e}")
            result = ToolResult.failure(str(e))

        if bridge.after_call:
            try:
                await bridge.after_call(name, args, result)
            except Exception as e:
                logger.error(f"[RUNTIME] after_call hook for {name} failed: {e}")
                return ToolResult.failure(str(e))
        return result

    async def _run(self, name: str, args: dict, options: CallToolOptions) -> ToolResult:
        if options.approval_checker:
            approved, reason = self._read_approval(await options.approval_checker(name, args))
            if not approved:
                logger.info(f"[RUNTIME] {name} held for approval")
                return ToolResult.approval_required(name, reason)

        override = None
        if options.model_router:
            override = await _maybe_await(options.model_router(name, args))

        async with self._lock:
            return await self._dispatch_with_model(name, args, override)

    @staticmethod
    def _read_approval(decision: Any) -> tuple[bool, str | None]:
        if isinstance(decision, dict):
            return bool(decision.get("approved")), decision.get("reason")
        return bool(decision), None

    async def _dispatch_with_model(self, name: str, args: dict, override: str | None) -> ToolResult:
        runner = self.agent_runner
        if not override or runner is None:
            return await self._dispatch(name, args)

        previous = runner.model
        runner.model = override
        logger.debug(f"[RUNTIME] {name}: model {previous} -> {override}")
        try:
            return await self._dispatch(name, args)
        finally:
            runner.model = previous

    async def _dispatch(self, name: str, args: dict) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)
        validate_tool_args(name, args, TOOL_SCHEMAS[name])

        logger.info(f"[RUNTIME] Dispatching {name}")
        try:
            payload = await handler(args)
        except SpecflowError as e:
            logger.error(f"[RUNTIME] {name}: {e}")
            return ToolResult.failure(str(e))

        if isinstance(payload, dict) and payload.get("success") is False:
            return ToolResult.failure(payload.get("error", "failed"), payload)
        return ToolResult.success(payload)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _get_project_context(self, args: dict) -> dict:
        store = self.store
        full = args.get("includeFullHistory", False)
        return {
            "projectState": store.get_state(),
            "recentConversation": store.get_conversation(None if full else 10),
            "deliverables": store.get_all_deliverables(),
            "currentLane": store.get_current_lane(),
            "summary": store.get_summary(),
            "artifacts": await store.get_artifacts(),
        }

    async def _detect_phase(self, args: dict) -> dict:
        store = self.store
        current = store.current_phase
        conversation = args.get("conversationHistory") or store.get_conversation(10)

        detection = await self.machine.check_transition(conversation, args["userMessage"], current)
        if detection is None or "error" in detection:
            fallback = {"detected_phase": current, "confidence": 0.5, "shouldTransition": False}
            if detection:
                fallback["error"] = detection["error"]
            return fallback
        return detection

    async def _load_agent_persona(self, args: dict) -> dict:
        agent_id = args.get("agentId") or phase_agent(args.get("phase") or self.store.current_phase)
        persona = await asyncio.to_thread(self.personas.load, agent_id)
        return persona.to_dict()

    async def _transition_phase(self, args: dict) -> dict:
        context = dict(args.get("context") or {})
        context["userValidated"] = bool(args.get("userValidated", False))
        return await self.machine.execute_transition(self.store.current_phase, args["toPhase"], context)

    async def _generate_deliverable(self, args: dict) -> dict:
        deliverable_type = args["type"]
        context = dict(args.get("context") or {})
        generated = await self.deliverable_generator.generate(deliverable_type, context)

        metadata = {**context, **{key: value for key, value in generated.items() if key not in ("type", "content")}}
        record = await self.store.store_deliverable(deliverable_type, generated.get("content"), metadata)

        result = {"type": deliverable_type, "path": generated.get("path"), "phase": self.store.current_phase}
        if record.get("storyId"):
            result["storyId"] = record["storyId"]
        return result

    async def _record_decision(self, args: dict) -> dict:
        return await self.store.record_decision(args["key"], args["value"], args.get("rationale", ""))

    async def _add_conversation_message(self, args: dict) -> dict:
        return await self.store.add_message(args["role"], args["content"])

    async def _get_project_summary(self, args: dict) -> dict:
        return self.store.get_summary()

    async def _list_agents(self, args: dict) -> list[dict]:
        return await asyncio.to_thread(self.personas.list_agents)

    def _agent_context(self, context: dict) -> dict:
        state = self.store.get_state()
        return {
            "conversation": self.store.get_conversation(10),
            "requirements": state["requirements"],
            **context,
        }

    async def _execute_phase_workflow(self, args: dict) -> dict:
        phase = args["phase"]
        result = await self.agent_runner.execute_phase_workflow(phase, self._agent_context(args.get("context") or {}))
        payload = resolve_payload(to_raw_response(result.get("response")))
        if isinstance(payload, AgentParseError):
            # Prose answers are still useful here; only transitions need structure
            payload = {"text": payload.raw}
        return {"phase": phase, "agentId": result.get("agentId"), "result": payload}

    def _lane_context(self, args: dict) -> dict:
        state = self.store.get_state()
        context = dict(args.get("context") or {})
        if state["phaseHistory"]:
            context.setdefault("previousPhase", state["phaseHistory"][-1]["from"])
        context.setdefault("hasExistingPRD", self.store.has_deliverables())
        if args.get("forceLane"):
            context["forceLane"] = args["forceLane"]
        return context

    async def _select_development_lane(self, args: dict) -> dict:
        decision = await select_lane_with_log(self.store, args["userMessage"], self._lane_context(args))
        return {
            **decision,
            "plan": plan_phase_progression(decision["lane"]),
            "recentDecisions": get_decision_history(self.store.state_dir, 5),
        }

    async def _execute_workflow(self, args: dict) -> dict:
        request = args["userRequest"]
        context = dict(args.get("context") or {})
        decision = await select_lane_with_log(self.store, request, self._lane_context(args))

        if decision["lane"] == "quick":
            result = await self.quick_lane.execute(request, context)
        else:
            outputs = {}
            for phase in COMPLEX_WORKFLOW_PHASES:
                step = await self.agent_runner.execute_phase_workflow(
                    phase, self._agent_context({**context, "userRequest": request, "previousOutputs": outputs}),
                )
                outputs[phase] = step.get("response")
            result = {"userRequest": request, "phases": list(COMPLEX_WORKFLOW_PHASES), "outputs": outputs}

        return {"lane": decision["lane"], "decision": decision, "result": result}

    async def _record_review_outcome(self, args: dict) -> dict:
        return await self.store.record_review_outcome(args["checkpoint"], args.get("details") or {})

    async def _get_story(self, args: dict) -> dict:
        story = self.store.get_story(args.get("storyId"))
        if story is None:
            raise SpecflowError("No structured story has been recorded")
        return story

    async def _record_drawbridge_ingestion(self, args: dict) -> dict:
        return await self.store.record_drawbridge_ingestion(args["ingestion"])

    async def _get_drawbridge_review_queue(self, args: dict) -> dict:
        queue = self.store.get_drawbridge_review_queue(args.get("includeResolved", False))
        return {"tasks": queue, "count": len(queue)}

    async def _record_shadcn_installation(self, args: dict) -> dict:
        return await self.store.record_shadcn_component_installation(args["installation"])

    async def _apply_tweakcn_palette(self, args: dict) -> dict:
        return await self.store.apply_tweakcn_palette(args["palette"])

    async def _reset_project(self, args: dict) -> dict:
        state = await self.store.clear()
        self.machine.fsm.sync(self.store.current_phase)
        logger.info(f"[RUNTIME] Project reset, new id {state['projectId']}")
        return {"projectId": state["projectId"], "currentPhase": state["currentPhase"]}
