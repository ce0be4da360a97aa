"""
Project state store.

One ProjectStateStore per project directory. It is the only component that
touches the files under <project>/.specflow/; everything else goes through
its methods. Every mutating method validates and persists the files it
changed before returning, state.json last. A schema or write failure puts
the in-memory copy back and restores any file already rewritten, so a
failed call leaves no trace on either side.

Files:
  state.json          project record (phase, lane, histories, decisions, integrations)
  conversation.json   append-only message log
  deliverables.json   phase -> type -> record
  reviews.json        append-only review outcomes
  stories.json        structured story cache {records, latestId}
"""

import asyncio
import copy
import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from specflow.lib.config import OrchestratorConfig, load_config
from specflow.lib.constants import DEFAULT_LANE, INITIAL_PHASE, PHASES
from specflow.lib.errors import StateWriteError
from specflow.lib.validate import SchemaError, is_valid, validate
from specflow.state import files
from specflow.state.integrations import (
    DRAWBRIDGE,
    INTEGRATIONS,
    SHADCN,
    TWEAKCN,
    IntegrationSpec,
    append_record,
    build_review_queue,
    ensure_integrations,
)
from specflow.state.stories import StructuredStory, normalize_story

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"
CONVERSATION_FILE = "conversation.json"
DELIVERABLES_FILE = "deliverables.json"
REVIEWS_FILE = "reviews.json"
STORIES_FILE = "stories.json"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_project_id() -> str:
    return f"specflow-{int(datetime.now(timezone.utc).timestamp() * 1000)}-{uuid.uuid4().hex[:7]}"


def default_state() -> dict:
    return {
        "projectId": None,
        "projectName": None,
        "currentPhase": INITIAL_PHASE,
        "currentLane": None,
        "phaseHistory": [],
        "laneHistory": [],
        "requirements": {},
        "decisions": {},
        "userPreferences": {},
        "nextSteps": "",
        "createdAt": None,
        "updatedAt": utc_now(),
        "integrations": ensure_integrations({}),
    }


def empty_stories() -> dict:
    return {"records": {}, "latestId": None}


def parse_stories(raw: Any) -> dict:
    """Accept the current {records, latestId} shape or a bare id -> record map."""
    if raw is None:
        return empty_stories()
    if is_valid(raw, "stories"):
        return {"records": raw["records"], "latestId": raw.get("latestId")}
    if isinstance(raw, dict):
        records = raw.get("records") if isinstance(raw.get("records"), dict) else raw
        return {
            "records": {key: value for key, value in records.items() if isinstance(value, dict)},
            "latestId": None,
        }
    return empty_stories()


class ProjectStateStore:
    """Durable record of a single project's orchestration state."""

    def __init__(self, project_path: Path, config: OrchestratorConfig | None = None):
        self.project_path = Path(project_path)
        self.config = config or load_config(self.project_path)
        self.state_dir = self.config.state_dir
        self.state_file = self.state_dir / STATE_FILE
        self.conversation_file = self.state_dir / CONVERSATION_FILE
        self.deliverables_file = self.state_dir / DELIVERABLES_FILE
        self.reviews_file = self.state_dir / REVIEWS_FILE
        self.stories_file = self.state_dir / STORIES_FILE

        self.state = default_state()
        self.conversation: list[dict] = []
        self.deliverables: dict[str, dict] = {}
        self.review_history: list[dict] = []
        self.stories = empty_stories()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> dict:
        """Load existing state or create a fresh project. Safe to call repeatedly."""
        if self.state_file.exists():
            await self.load()
            if not self.state.get("projectId"):
                logger.warning(f"[STATE] {self.state_file} had no project id, assigning one")
                self.state["projectId"] = generate_project_id()
                self.state["createdAt"] = self.state.get("createdAt") or utc_now()
                await self.save()
        else:
            now = utc_now()
            self.state["projectId"] = generate_project_id()
            self.state["projectName"] = self.state.get("projectName") or self.config.project_name
            self.state["createdAt"] = now
            self.state["updatedAt"] = now
            await self.save()
            logger.info(f"[STATE] Created project {self.state['projectId']} in {self.state_dir}")
        return self.get_state()

    async def load(self) -> None:
        """Read every state file; each one falls back to its default on its own."""
        state_raw, conversation_raw, deliverables_raw, reviews_raw, stories_raw = await asyncio.gather(
            files.read_json_async(self.state_file, "state"),
            files.read_json_async(self.conversation_file, "conversation"),
            files.read_json_async(self.deliverables_file, "deliverables"),
            files.read_json_async(self.reviews_file, "reviews"),
            files.read_json_async(self.stories_file),
        )

        state = default_state()
        if state_raw is not None:
            state.update(state_raw)
        if state["currentPhase"] not in PHASES:
            logger.warning(f"[STATE] Unknown phase '{state['currentPhase']}', resetting to {INITIAL_PHASE}")
            state["currentPhase"] = INITIAL_PHASE
        state["integrations"] = ensure_integrations(state.get("integrations"))

        self.state = state
        self.conversation = conversation_raw if conversation_raw is not None else []
        self.deliverables = deliverables_raw if deliverables_raw is not None else {}
        self.review_history = reviews_raw if reviews_raw is not None else []
        self.stories = parse_stories(stories_raw)

    def _documents(self) -> dict[str, tuple[Path, Any]]:
        # state.json is written last
        return {
            "conversation": (self.conversation_file, self.conversation),
            "deliverables": (self.deliverables_file, self.deliverables),
            "reviews": (self.reviews_file, self.review_history),
            "stories": (self.stories_file, self.stories),
            "state": (self.state_file, self.state),
        }

    def _restore_documents(self, backup: dict[str, Any]) -> None:
        self.conversation = backup["conversation"]
        self.deliverables = backup["deliverables"]
        self.review_history = backup["reviews"]
        self.stories = backup["stories"]
        self.state = backup["state"]

    async def save(self, names: Iterable[str] | None = None) -> None:
        """Validate and persist the named files, all five by default.

        state.json is always included since updatedAt changes. Every file is
        checked against the schema it is loaded with before anything is
        written; a state that would be discarded on the next load never
        reaches disk.

        Raises:
            SchemaError: a document does not match its schema; nothing was written
            StateWriteError: a file could not be written; files written
                earlier in this call were put back
        """
        self.state["integrations"] = ensure_integrations(self.state.get("integrations"))
        self.state["updatedAt"] = utc_now()

        wanted = None if names is None else set(names) | {"state"}
        entries = []
        for name, (path, data) in self._documents().items():
            if wanted is not None and name not in wanted:
                continue
            snapshot = copy.deepcopy(data)
            validate(snapshot, name)
            entries.append((path, snapshot))

        await files.write_json_group_async(entries)

    async def _commit(self, mutate: Callable[[], Any]) -> Any:
        """Apply mutate() and persist the files it changed.

        On a schema or write failure the in-memory state is restored and the
        files on disk are left as they were before the call.
        """
        backup = {name: copy.deepcopy(data) for name, (_, data) in self._documents().items()}
        result = mutate()
        changed = [name for name, (_, data) in self._documents().items() if data != backup[name]]
        try:
            await self.save(changed)
        except (SchemaError, StateWriteError) as e:
            logger.warning(f"[STATE] Change not saved, restored previous state: {e}")
            self._restore_documents(backup)
            raise
        return result

    async def clear(self) -> dict:
        """Delete all durable state and start over with a fresh project id."""
        await asyncio.to_thread(self._remove_state_dir)
        self.state = default_state()
        self.conversation = []
        self.deliverables = {}
        self.review_history = []
        self.stories = empty_stories()
        logger.info(f"[STATE] Cleared {self.state_dir}")
        return await self.initialize()

    def _remove_state_dir(self) -> None:
        # config.env and agents.yaml survive a reset
        if not self.state_dir.exists():
            return
        keep = {"config.env", "agents.yaml", "agents"}
        for path in self.state_dir.iterdir():
            if path.name in keep:
                continue
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()

    # ------------------------------------------------------------------
    # Project record
    # ------------------------------------------------------------------

    @property
    def current_phase(self) -> str:
        return self.state["currentPhase"]

    def get_state(self) -> dict:
        return copy.deepcopy(self.state)

    async def update_state(self, updates: dict) -> None:
        """Shallow-merge updates into the project record."""
        await self._commit(lambda: self.state.update(updates))

    async def transition_phase(self, new_phase: str, context: dict | None = None) -> dict:
        """Record a phase change and make new_phase current.

        Legality is not checked here; the transition machine decides.
        """
        if new_phase not in PHASES:
            raise ValueError(f"Unknown phase: {new_phase}")

        transition = {
            "from": self.state["currentPhase"],
            "to": new_phase,
            "timestamp": utc_now(),
            "context": copy.deepcopy(context or {}),
        }

        def mutate():
            self.state["phaseHistory"].append(transition)
            self.state["currentPhase"] = new_phase

        await self._commit(mutate)
        logger.info(f"[STATE] Phase {transition['from']} -> {new_phase}")
        return copy.deepcopy(transition)

    async def update_requirements(self, requirements: dict) -> None:
        await self._commit(lambda: self.state["requirements"].update(requirements))

    async def update_preferences(self, preferences: dict) -> None:
        await self._commit(lambda: self.state["userPreferences"].update(preferences))

    async def set_next_steps(self, steps: str) -> None:
        await self._commit(lambda: self.state.__setitem__("nextSteps", steps))

    async def record_decision(self, key: str, value: Any, rationale: str = "") -> dict:
        """Set decisions[key]; the previous value for key is discarded."""
        record = {
            "value": value,
            "rationale": rationale,
            "timestamp": utc_now(),
            "phase": self.state["currentPhase"],
        }
        await self._commit(lambda: self.state["decisions"].__setitem__(key, record))
        return copy.deepcopy(record)

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def add_message(self, role: str, content: str, metadata: dict | None = None) -> dict:
        message = {
            **(metadata or {}),
            "role": role,
            "content": content,
            "timestamp": utc_now(),
            "phase": self.state["currentPhase"],
        }
        await self._commit(lambda: self.conversation.append(message))
        return copy.deepcopy(message)

    def get_conversation(self, limit: int | None = None) -> list[dict]:
        if isinstance(limit, int) and limit > 0:
            return copy.deepcopy(self.conversation[-limit:])
        return copy.deepcopy(self.conversation)

    def get_phase_conversation(self, phase: str) -> list[dict]:
        return [copy.deepcopy(msg) for msg in self.conversation if msg.get("phase") == phase]

    # ------------------------------------------------------------------
    # Deliverables and stories
    # ------------------------------------------------------------------

    async def store_deliverable(
        self,
        deliverable_type: str,
        content: Any,
        metadata: dict | None = None,
        phase: str | None = None,
    ) -> dict:
        """Write deliverables[phase][type], overwriting any earlier one.

        phase defaults to the current phase. A `story` deliverable is also
        normalised into the structured story cache.
        """
        metadata = metadata or {}
        phase = phase or self.state["currentPhase"]
        timestamp = utc_now()
        record = {**copy.deepcopy(metadata), "content": content, "timestamp": timestamp}

        story = None
        if deliverable_type == "story":
            story = normalize_story(metadata, content, timestamp, phase)
            if story is not None:
                record["structured"] = story.to_record()
                record["storyId"] = story.id

        def mutate():
            self.deliverables.setdefault(phase, {})[deliverable_type] = record
            if story is not None:
                self._cache_story(story)

        await self._commit(mutate)
        logger.info(f"[STATE] Stored {deliverable_type} deliverable for {phase}")
        return copy.deepcopy(record)

    def _cache_story(self, story: StructuredStory) -> None:
        key = story.id or "latest"
        self.stories["records"][key] = story.to_record()
        self.stories["latestId"] = key

    def get_story(self, story_id: str | None = None) -> dict | None:
        """Look up a structured story.

        Order: explicit id, latestId, most recent storedAt, first record.
        """
        records = self.stories.get("records") or {}
        latest_id = self.stories.get("latestId")

        if story_id and story_id in records:
            return copy.deepcopy(records[story_id])
        if latest_id and latest_id in records:
            return copy.deepcopy(records[latest_id])

        dated = [record for record in records.values() if record.get("storedAt")]
        if dated:
            return copy.deepcopy(max(dated, key=lambda record: record["storedAt"]))

        first = next(iter(records.values()), None)
        return copy.deepcopy(first) if first is not None else None

    def get_deliverable(self, phase: str, deliverable_type: str) -> dict | None:
        record = self.deliverables.get(phase, {}).get(deliverable_type)
        return copy.deepcopy(record) if record is not None else None

    def get_phase_deliverables(self, phase: str) -> dict:
        return copy.deepcopy(self.deliverables.get(phase, {}))

    def get_all_deliverables(self) -> dict:
        return copy.deepcopy(self.deliverables)

    def has_deliverables(self) -> bool:
        return any(self.deliverables.values())

    # ------------------------------------------------------------------
    # Reviews and lanes
    # ------------------------------------------------------------------

    async def record_review_outcome(self, checkpoint: str, details: dict | None = None) -> dict:
        record = {**copy.deepcopy(details or {}), "checkpoint": checkpoint, "timestamp": utc_now()}
        await self._commit(lambda: self.review_history.append(record))
        return copy.deepcopy(record)

    def get_review_history(self, limit: int | None = None) -> list[dict]:
        if isinstance(limit, int) and limit > 0:
            return copy.deepcopy(self.review_history[-limit:])
        return copy.deepcopy(self.review_history)

    async def record_lane_decision(
        self,
        lane: str,
        rationale: str,
        confidence: float,
        user_message: str = "",
        *,
        level: int | None = None,
        level_score: float | None = None,
        level_signals: dict | None = None,
        level_rationale: str | None = None,
    ) -> dict:
        """Append to laneHistory and make lane the current lane."""
        decision = {
            "lane": lane,
            "rationale": rationale,
            "confidence": confidence,
            "userMessage": user_message,
            "timestamp": utc_now(),
            "phase": self.state["currentPhase"],
        }
        optional = {
            "level": level,
            "levelScore": level_score,
            "levelSignals": copy.deepcopy(level_signals),
            "levelRationale": level_rationale,
        }
        decision.update({key: value for key, value in optional.items() if value is not None})

        def mutate():
            self.state["laneHistory"].append(decision)
            self.state["currentLane"] = lane

        await self._commit(mutate)
        return copy.deepcopy(decision)

    def get_lane_history(self, limit: int | None = None) -> list[dict]:
        history = self.state["laneHistory"]
        if isinstance(limit, int) and limit > 0:
            return copy.deepcopy(history[-limit:])
        return copy.deepcopy(history)

    def get_current_lane(self) -> str:
        return self.state.get("currentLane") or DEFAULT_LANE

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    async def _record_integration(self, spec: IntegrationSpec, payload: dict | None) -> dict:
        record = spec.normalize(payload or {}, utc_now())

        def mutate():
            integrations = ensure_integrations(self.state.get("integrations"))
            self.state["integrations"] = integrations
            append_record(integrations[spec.name], spec, record, self.config.integration_log_cap)

        await self._commit(mutate)
        return copy.deepcopy(record)

    def get_integration_records(self, name: str) -> list[dict]:
        spec = INTEGRATIONS[name]
        integrations = ensure_integrations(self.state.get("integrations"))
        return copy.deepcopy(integrations[name][spec.records_key])

    def get_integration(self, name: str) -> dict:
        integrations = ensure_integrations(self.state.get("integrations"))
        return copy.deepcopy(integrations[name])

    async def record_drawbridge_ingestion(self, ingestion: dict | None = None) -> dict:
        return await self._record_integration(DRAWBRIDGE, ingestion)

    def get_drawbridge_ingestions(self) -> list[dict]:
        return self.get_integration_records(DRAWBRIDGE.name)

    def get_drawbridge_review_queue(self, include_resolved: bool = False) -> list[dict]:
        return build_review_queue(self.get_drawbridge_ingestions(), include_resolved)

    async def record_shadcn_component_installation(self, installation: dict | None = None) -> dict:
        return await self._record_integration(SHADCN, installation)

    def get_shadcn_component_installations(self) -> list[dict]:
        return self.get_integration_records(SHADCN.name)

    async def apply_tweakcn_palette(self, palette: dict | None = None) -> dict:
        return await self._record_integration(TWEAKCN, palette)

    def get_tweakcn_palettes(self) -> list[dict]:
        return self.get_integration_records(TWEAKCN.name)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def get_summary(self) -> dict:
        return {
            "projectId": self.state["projectId"],
            "projectName": self.state.get("projectName"),
            "currentPhase": self.state["currentPhase"],
            "currentLane": self.state.get("currentLane"),
            "phaseCount": len(self.state["phaseHistory"]),
            "messageCount": len(self.conversation),
            "deliverableCount": sum(len(by_type) for by_type in self.deliverables.values()),
            "createdAt": self.state.get("createdAt"),
            "updatedAt": self.state.get("updatedAt"),
        }

    def export_for_llm(self) -> dict:
        return {
            "currentPhase": self.state["currentPhase"],
            "requirements": copy.deepcopy(self.state["requirements"]),
            "decisions": copy.deepcopy(self.state["decisions"]),
            "userPreferences": copy.deepcopy(self.state["userPreferences"]),
            "nextSteps": self.state["nextSteps"],
            "recentConversation": self.get_conversation(10),
            "deliverables": self.get_all_deliverables(),
            "reviewHistory": self.get_review_history(5),
        }

    async def get_artifacts(self) -> dict:
        """List markdown files under the docs directory."""
        return await asyncio.to_thread(self._scan_docs)

    def _scan_docs(self) -> dict:
        docs_dir = self.config.docs_path
        if not docs_dir.is_dir():
            return {"exists": False, "artifacts": [], "count": 0}
        artifacts = sorted(str(path.relative_to(docs_dir)) for path in docs_dir.rglob("*.md") if path.is_file())
        return {"exists": True, "artifacts": artifacts, "count": len(artifacts)}
