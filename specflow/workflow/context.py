"""
Context carried between phases.

When the workflow moves to a new phase, the incoming agent gets the caller's
explicit context plus the earlier deliverables that phase builds on, so it
does not need the whole history replayed. Deliverables are fetched through
an injected loader; this module never touches the state store.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DeliverableLoader = Callable[[str], Awaitable[dict]]

PRESERVATION_MARKERS = ("preservedFrom", "preservedTo", "preservedAt")

# Target phase -> [(source phase, deliverable type or None for every type)]
CARRY_FORWARD: dict[str, list[tuple[str, str | None]]] = {
    "analyst": [],
    "pm": [("analyst", "brief")],
    "architect": [("analyst", "brief"), ("pm", "prd")],
    "sm": [("pm", "prd"), ("architect", "architecture")],
    "dev": [("sm", "epic"), ("sm", "story"), ("architect", "architecture")],
    "qa": [("sm", "story"), ("dev", None)],
    "ux": [("pm", "prd")],
    "po": [("pm", "prd"), ("sm", "epic"), ("sm", "story")],
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def carried_keys(to_phase: str) -> list[tuple[str, str | None]]:
    return list(CARRY_FORWARD.get(to_phase, []))


async def collect_deliverables(to_phase: str, load_deliverables: DeliverableLoader) -> dict:
    """Fetch the earlier deliverables to_phase builds on.

    Returns {type: content}. Each source phase is loaded at most once.
    """
    wanted = carried_keys(to_phase)
    cache: dict[str, dict] = {}
    collected: dict[str, Any] = {}

    for source_phase, deliverable_type in wanted:
        if source_phase not in cache:
            cache[source_phase] = await load_deliverables(source_phase) or {}
        phase_deliverables = cache[source_phase]

        if deliverable_type is None:
            for key, record in phase_deliverables.items():
                collected.setdefault(key, _content(record))
        elif deliverable_type in phase_deliverables:
            collected[deliverable_type] = _content(phase_deliverables[deliverable_type])

    return collected


def _content(record: Any) -> Any:
    if isinstance(record, dict) and "content" in record:
        return copy.deepcopy(record["content"])
    return copy.deepcopy(record)


async def preserve_context(
    from_phase: str,
    to_phase: str,
    explicit_context: dict | None,
    load_deliverables: DeliverableLoader,
) -> dict:
    """Build the context handed to the to_phase agent.

    Explicit keys win over carried deliverables. explicit_context is not
    modified.
    """
    merged = await collect_deliverables(to_phase, load_deliverables)
    merged.update(copy.deepcopy(explicit_context or {}))
    merged["preservedFrom"] = from_phase
    merged["preservedTo"] = to_phase
    merged["preservedAt"] = _now()

    logger.debug(f"[PHASE] Preserved {len(merged) - len(PRESERVATION_MARKERS)} keys for {from_phase} -> {to_phase}")
    return merged


def restore_context(preserved: dict) -> dict:
    """Strip preservation markers and stamp the restore."""
    restored = {key: copy.deepcopy(value) for key, value in preserved.items() if key not in PRESERVATION_MARKERS}
    restored["restoredFrom"] = preserved.get("preservedFrom")
    restored["restoredTo"] = preserved.get("preservedTo")
    restored["restoredAt"] = _now()
    restored["originalPreservationTime"] = preserved.get("preservedAt")
    return restored
