"""
Bounded integration logs.

Third-party integrations (Drawbridge context packs, shadcn component
installs, tweakcn palettes) each keep an append-only list of timestamped
records under state["integrations"][name]. All three share the same
rotation and defaulting rules and differ only in record shape.
"""

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

RESOLVED_TASK_STATUSES = frozenset({
    "resolved", "done", "closed", "complete", "completed", "approved",
})


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


def _dict_copy(value: Any) -> dict:
    return copy.deepcopy(value) if isinstance(value, dict) else {}


def _count(value: Any, default: int) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return default


def normalize_drawbridge_task(task: dict) -> dict:
    markdown = _str_or_none(task.get("markdownExcerpt"))
    if markdown is None:
        markdown = _str_or_none(task.get("markdown"))
    return {
        "id": _str_or_none(task.get("id")),
        "summary": _str_or_none(task.get("summary")),
        "status": _str_or_none(task.get("status")),
        "severity": _str_or_none(task.get("severity")),
        "action": _str_or_none(task.get("action")),
        "lane": _str_or_none(task.get("lane")),
        "selectors": _str_list(task.get("selectors")),
        "references": _str_list(task.get("references")),
        "screenshot": _str_or_none(task.get("screenshot")),
        "markdownExcerpt": markdown,
    }


def normalize_drawbridge_ingestion(payload: dict, timestamp: str) -> dict:
    raw_tasks = payload.get("tasks")
    tasks = [
        normalize_drawbridge_task(task)
        for task in (raw_tasks if isinstance(raw_tasks, list) else [])
        if isinstance(task, dict)
    ]
    with_screenshots = sum(1 for task in tasks if task["screenshot"])
    stats = payload.get("stats") if isinstance(payload.get("stats"), dict) else {}

    return {
        "ingestionId": payload.get("ingestionId") or _new_id("ingestion"),
        "packId": payload.get("packId") or None,
        "mode": payload.get("mode") or None,
        "ingestedAt": payload.get("ingestedAt") or timestamp,
        "source": _dict_copy(payload.get("source")),
        "tasks": tasks,
        "stats": {
            "total": _count(stats.get("total"), len(tasks)),
            "withScreenshots": _count(stats.get("withScreenshots"), with_screenshots),
            "withoutScreenshots": _count(stats.get("withoutScreenshots"), len(tasks) - with_screenshots),
        },
        "metadata": _dict_copy(payload.get("metadata")),
        "docs": _dict_copy(payload.get("docs")),
    }


def normalize_shadcn_installation(payload: dict, timestamp: str) -> dict:
    components = _str_list(payload.get("components"))
    single = _str_or_none(payload.get("component"))
    if single and single not in components:
        components.insert(0, single)

    return {
        "installationId": payload.get("installationId") or _new_id("shadcn"),
        "components": components,
        "registry": _str_or_none(payload.get("registry")),
        "files": _str_list(payload.get("files")),
        "installedAt": payload.get("installedAt") or timestamp,
        "metadata": _dict_copy(payload.get("metadata")),
    }


def normalize_tweakcn_palette(payload: dict, timestamp: str) -> dict:
    colors = payload.get("colors") if isinstance(payload.get("colors"), dict) else {}
    return {
        "paletteId": payload.get("paletteId") or _new_id("palette"),
        "name": _str_or_none(payload.get("name")),
        "mode": _str_or_none(payload.get("mode")),
        "colors": {key: value for key, value in colors.items() if isinstance(value, str)},
        "appliedAt": payload.get("appliedAt") or timestamp,
        "metadata": _dict_copy(payload.get("metadata")),
    }


@dataclass(frozen=True)
class IntegrationSpec:
    """Shape of one integration log."""
    name: str
    records_key: str
    timestamp_key: str
    normalize: Callable[[dict, str], dict]
    # Integration-level fields beyond the record list, with their defaults
    defaults: dict = field(default_factory=dict)
    # Integration-level field -> record key copied on every append
    tracked: dict = field(default_factory=dict)


DRAWBRIDGE = IntegrationSpec(
    name="drawbridge",
    records_key="ingestions",
    timestamp_key="ingestedAt",
    normalize=normalize_drawbridge_ingestion,
    defaults={"lastMode": None},
    tracked={"lastMode": "mode"},
)

SHADCN = IntegrationSpec(
    name="shadcn",
    records_key="installations",
    timestamp_key="installedAt",
    normalize=normalize_shadcn_installation,
)

TWEAKCN = IntegrationSpec(
    name="tweakcn",
    records_key="palettes",
    timestamp_key="appliedAt",
    normalize=normalize_tweakcn_palette,
    defaults={"activePaletteId": None},
    tracked={"activePaletteId": "paletteId"},
)

INTEGRATIONS = {spec.name: spec for spec in (DRAWBRIDGE, SHADCN, TWEAKCN)}


def empty_integration(spec: IntegrationSpec) -> dict:
    data = {spec.records_key: [], "lastActivity": None}
    data.update(copy.deepcopy(spec.defaults))
    return data


def ensure_integrations(integrations: Any) -> dict:
    """Repair the integrations mapping in place (or replace it) and return it.

    Unknown integration names are kept as-is.
    """
    if not isinstance(integrations, dict):
        integrations = {}

    for spec in INTEGRATIONS.values():
        current = integrations.get(spec.name)
        if not isinstance(current, dict):
            integrations[spec.name] = empty_integration(spec)
            continue
        if not isinstance(current.get(spec.records_key), list):
            current[spec.records_key] = []
        current.setdefault("lastActivity", None)
        for key, value in spec.defaults.items():
            current.setdefault(key, copy.deepcopy(value))

    return integrations


def append_record(integration: dict, spec: IntegrationSpec, record: dict, cap: int) -> None:
    """Append a record, rotating out the oldest entries past cap.

    When the log already holds cap records it is trimmed to the newest
    cap - 1 before appending, so it never exceeds cap.
    """
    records = integration[spec.records_key]
    if len(records) >= cap:
        records = records[-(cap - 1):] if cap > 1 else []
    records.append(record)
    integration[spec.records_key] = records
    integration["lastActivity"] = record.get(spec.timestamp_key)
    for field_name, record_key in spec.tracked.items():
        integration[field_name] = record.get(record_key)


def build_review_queue(ingestions: list[dict], include_resolved: bool = False) -> list[dict]:
    """Flatten Drawbridge tasks across ingestions, newest ingestion first."""
    queue = []
    for ingestion in ingestions:
        for task in ingestion.get("tasks", []):
            status = task.get("status")
            normalized = status.lower() if isinstance(status, str) else "pending"
            if not include_resolved and normalized in RESOLVED_TASK_STATUSES:
                continue
            queue.append({
                "packId": ingestion.get("packId"),
                "ingestionId": ingestion.get("ingestionId"),
                "mode": ingestion.get("mode"),
                "ingestedAt": ingestion.get("ingestedAt"),
                "id": task.get("id"),
                "summary": task.get("summary"),
                "selectors": list(task.get("selectors", [])),
                "screenshot": task.get("screenshot"),
                "status": status,
                "severity": task.get("severity"),
                "action": task.get("action"),
                "lane": task.get("lane"),
                "markdownExcerpt": task.get("markdownExcerpt"),
            })

    # Newest ingestion first, then task id ascending
    queue.sort(key=lambda item: item["id"] or "")
    queue.sort(key=lambda item: item["ingestedAt"] or "", reverse=True)
    return queue
