"""
Structured story records.

A `story` deliverable is normalised into a StructuredStory so later phases
can look up acceptance criteria or numbering directly instead of parsing
the story markdown. Records are persisted with camelCase keys.
"""

import re
from dataclasses import dataclass, field, fields
from typing import Any, Optional

# Metadata keys that may hold a pre-built structured story, in priority order
STRUCTURED_SOURCE_KEYS = ("structuredStory", "structured", "story", "fields")

_TEXT_FIELDS = (
    "title", "persona", "userRole", "action", "benefit", "summary", "description",
    "technicalDetails", "implementationNotes", "testingStrategy",
)
_LIST_FIELDS = ("acceptanceCriteria", "definitionOfDone")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class StructuredStory:
    """Normalised view of a story deliverable."""
    id: str                                     # "1.2", explicit storyId, slug, or "latest"
    title: Optional[str] = None
    persona: Optional[str] = None
    user_role: Optional[str] = None
    action: Optional[str] = None
    benefit: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    acceptance_criteria: list[str] = field(default_factory=list)
    definition_of_done: list[str] = field(default_factory=list)
    technical_details: Optional[str] = None
    implementation_notes: Optional[str] = None
    testing_strategy: Optional[str] = None
    dependencies: Any = None
    epic_number: int | str | None = None
    story_number: int | str | None = None
    path: Optional[str] = None
    content: Any = None
    stored_at: Optional[str] = None             # ISO timestamp
    source_phase: Optional[str] = None
    extra: dict = field(default_factory=dict)   # Unknown keys, kept verbatim

    def to_record(self) -> dict:
        """Return the persisted (camelCase) form."""
        record = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = list(value)
            record[_camel(f.name)] = value
        return record

    @classmethod
    def from_record(cls, record: dict) -> "StructuredStory":
        known = {_camel(f.name): f.name for f in fields(cls) if f.name != "extra"}
        kwargs = {}
        extra = {}
        for key, value in record.items():
            if key in known:
                kwargs[known[key]] = value
            else:
                extra[key] = value
        kwargs.setdefault("id", "latest")
        return cls(extra=extra, **kwargs)


def normalize_story_list(value: Any) -> list[str]:
    """Coerce a checklist field to a list of non-empty trimmed strings.

    Accepts a list (non-strings dropped) or a newline-delimited string.
    """
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str):
        return [line.strip() for line in re.split(r'\r?\n+', value) if line.strip()]
    return []


def _identifier(value: Any) -> int | str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        return value
    return None


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _has_story_fields(metadata: dict) -> bool:
    for key in _TEXT_FIELDS + ("dependencies",):
        if metadata.get(key):
            return True
    for key in _LIST_FIELDS:
        if normalize_story_list(metadata.get(key)):
            return True
    return metadata.get("epicNumber") is not None or metadata.get("storyNumber") is not None


def normalize_story(
    metadata: dict | None,
    content: Any,
    timestamp: str,
    phase: str,
) -> StructuredStory | None:
    """Build a StructuredStory from deliverable metadata.

    A pre-built structure under one of STRUCTURED_SOURCE_KEYS wins; otherwise
    the story fields are read from metadata itself. Returns None when the
    metadata carries no story information at all.
    """
    metadata = metadata or {}

    structured = None
    for key in STRUCTURED_SOURCE_KEYS:
        candidate = metadata.get(key)
        if isinstance(candidate, dict):
            structured = dict(candidate)
            break

    if structured is None:
        if not _has_story_fields(metadata):
            return None
        structured = {key: metadata.get(key) for key in _TEXT_FIELDS + _LIST_FIELDS}
        structured["dependencies"] = metadata.get("dependencies")
        structured["epicNumber"] = metadata.get("epicNumber")
        structured["storyNumber"] = metadata.get("storyNumber")

    epic_number = _first_present(
        _identifier(metadata.get("epicNumber")),
        _identifier(structured.get("epicNumber")),
        _identifier(structured.get("epic")),
    )
    story_number = _first_present(
        _identifier(metadata.get("storyNumber")),
        _identifier(structured.get("storyNumber")),
    )

    resolved_id = metadata.get("storyId") or metadata.get("storyKey") or structured.get("id")
    if not resolved_id:
        if epic_number is not None and story_number is not None:
            resolved_id = f"{epic_number}.{story_number}"
        else:
            resolved_id = structured.get("slug")

    record = dict(structured)
    for key in _TEXT_FIELDS:
        record[key] = _first_present(structured.get(key), metadata.get(key))
    for key in _LIST_FIELDS:
        record[key] = normalize_story_list(_first_present(structured.get(key), metadata.get(key)))

    record["id"] = str(resolved_id) if resolved_id else "latest"
    record["epicNumber"] = epic_number
    record["storyNumber"] = story_number
    record["dependencies"] = _first_present(structured.get("dependencies"), metadata.get("dependencies"))
    record["path"] = _first_present(metadata.get("path"), structured.get("path"))
    record["content"] = _first_present(content, structured.get("content"))
    record["storedAt"] = timestamp
    record["sourcePhase"] = phase

    return StructuredStory.from_record(record)
