"""
Deliverable documents under docs/.

    docs/brief.md
    docs/prd.md
    docs/architecture.md (+ docs/architecture/*.md shards)
    docs/epics/epic-<n>-<slug>.md
    docs/stories/story-<epic>-<story>-<slug>.md
    docs/qa/assessments/risk-assessment.md

Each generator returns {type, path, content}; stories also carry the
structured story so the store can cache it without re-parsing markdown.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

from specflow.lib.errors import UnknownDeliverableError
from specflow.state.stories import normalize_story_list

logger = logging.getLogger(__name__)

TBD = "TBD"


def slugify(text: Any) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", str(text or "").lower()).strip("-")
    return slug or "untitled"


def _text(value: Any) -> str:
    if value is None or value == "" or value == []:
        return TBD
    if isinstance(value, list):
        return "\n".join(f"- {item}" for item in value)
    if isinstance(value, dict):
        return "\n".join(f"- **{key}**: {item}" for key, item in value.items())
    return str(value)


def _checklist(value: Any) -> str:
    items = normalize_story_list(value)
    if not items:
        return TBD
    return "\n".join(f"- [ ] {item}" for item in items)


def format_brief(context: dict) -> str:
    return (
        "# Project Brief\n\n"
        f"## Problem Statement\n{_text(context.get('problemStatement'))}\n\n"
        f"## Target Users\n{_text(context.get('targetUsers'))}\n\n"
        f"## Goals & Objectives\n{_text(context.get('goals'))}\n\n"
        f"## Success Criteria\n{_text(context.get('successCriteria'))}\n"
    )


def format_prd(context: dict) -> str:
    return (
        f"# {context.get('projectName') or 'Product'} Requirements Document\n\n"
        f"## Overview\n{_text(context.get('overview') or context.get('brief'))}\n\n"
        f"## Functional Requirements\n{_text(context.get('functionalRequirements'))}\n\n"
        f"## Non-Functional Requirements\n{_text(context.get('nonFunctionalRequirements'))}\n\n"
        f"## User Stories\n{_text(context.get('userStories'))}\n\n"
        f"## Out of Scope\n{_text(context.get('outOfScope'))}\n"
    )


def format_architecture(context: dict) -> str:
    return (
        "# Architecture\n\n"
        f"## System Overview\n{_text(context.get('overview'))}\n\n"
        f"## Components\n{_text(context.get('components'))}\n\n"
        f"## Tech Stack\n{_text(context.get('techStack'))}\n\n"
        f"## Data Model\n{_text(context.get('dataModel'))}\n\n"
        f"## Deployment\n{_text(context.get('deployment'))}\n"
    )


def format_epic(context: dict) -> str:
    return (
        f"# Epic {context.get('number', '')}: {context.get('title') or 'Untitled'}\n\n"
        f"## Goal\n{_text(context.get('goal') or context.get('description'))}\n\n"
        f"## Stories\n{_text(context.get('stories'))}\n"
    )


def format_story(context: dict) -> str:
    heading = f"# Story {context.get('epicNumber')}.{context.get('storyNumber')}: {context.get('title') or 'Untitled'}"
    role = context.get("userRole") or context.get("persona") or "user"
    return (
        f"{heading}\n\n"
        "## Story\n"
        f"As a {role}, I want {context.get('action') or TBD}, so that {context.get('benefit') or TBD}.\n\n"
        f"## Description\n{_text(context.get('description') or context.get('summary'))}\n\n"
        f"## Acceptance Criteria\n{_checklist(context.get('acceptanceCriteria'))}\n\n"
        f"## Definition of Done\n{_checklist(context.get('definitionOfDone'))}\n\n"
        f"## Technical Details\n{_text(context.get('technicalDetails'))}\n\n"
        f"## Testing Strategy\n{_text(context.get('testingStrategy'))}\n"
    )


def format_qa_assessment(context: dict) -> str:
    return (
        "# QA Risk Assessment\n\n"
        f"## Risks\n{_text(context.get('risks'))}\n\n"
        f"## Test Strategy\n{_text(context.get('testStrategy'))}\n\n"
        f"## Recommendations\n{_text(context.get('recommendations'))}\n"
    )


class DocsDeliverableGenerator:
    """Default DeliverableGenerator writing markdown into the docs directory."""

    def __init__(self, project_path: Path, docs_dir: str = "docs"):
        self.project_path = Path(project_path)
        self.docs_path = self.project_path / docs_dir

    def _write(self, relative: str, content: str) -> Path:
        path = self.docs_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info(f"[AGENT] Wrote {path.relative_to(self.project_path)}")
        return path

    def generate_brief(self, context: dict) -> dict:
        content = format_brief(context)
        return {"type": "brief", "path": str(self._write("brief.md", content)), "content": content}

    def generate_prd(self, context: dict) -> dict:
        content = format_prd(context)
        return {"type": "prd", "path": str(self._write("prd.md", content)), "content": content}

    def generate_architecture(self, context: dict) -> dict:
        content = format_architecture(context)
        path = self._write("architecture.md", content)
        shards = []
        for key, name in (("codingStandards", "coding-standards"), ("techStack", "tech-stack"), ("sourceTree", "source-tree")):
            if context.get(key):
                shard = self._write(f"architecture/{name}.md", f"# {name.replace('-', ' ').title()}\n\n{_text(context[key])}\n")
                shards.append(str(shard))
        return {"type": "architecture", "path": str(path), "content": content, "shards": shards}

    def generate_epic(self, context: dict) -> dict:
        number = context.get("number", context.get("epicNumber", 1))
        content = format_epic({**context, "number": number})
        path = self._write(f"epics/epic-{number}-{slugify(context.get('title'))}.md", content)
        return {"type": "epic", "path": str(path), "content": content, "number": number}

    def generate_story(self, context: dict) -> dict:
        epic_number = context.get("epicNumber")
        story_number = context.get("storyNumber")
        content = format_story(context)
        path = self._write(
            f"stories/story-{epic_number}-{story_number}-{slugify(context.get('title'))}.md", content,
        )

        story_id = context.get("storyId")
        if not story_id and epic_number is not None and story_number is not None:
            story_id = f"{epic_number}.{story_number}"

        structured = {
            "id": story_id,
            "title": context.get("title"),
            "persona": context.get("persona"),
            "userRole": context.get("userRole"),
            "action": context.get("action"),
            "benefit": context.get("benefit"),
            "summary": context.get("summary"),
            "description": context.get("description"),
            "acceptanceCriteria": normalize_story_list(context.get("acceptanceCriteria")),
            "definitionOfDone": normalize_story_list(context.get("definitionOfDone")),
            "technicalDetails": context.get("technicalDetails"),
            "implementationNotes": context.get("implementationNotes"),
            "testingStrategy": context.get("testingStrategy"),
            "dependencies": context.get("dependencies"),
            "epicNumber": epic_number,
            "storyNumber": story_number,
            "path": str(path.relative_to(self.project_path)),
        }
        return {
            "type": "story",
            "path": str(path),
            "content": content,
            "epicNumber": epic_number,
            "storyNumber": story_number,
            "storyId": story_id,
            "structured": structured,
        }

    def generate_qa_assessment(self, context: dict) -> dict:
        content = format_qa_assessment(context)
        path = self._write("qa/assessments/risk-assessment.md", content)
        return {"type": "qa_assessment", "path": str(path), "content": content}

    async def generate(self, deliverable_type: str, context: dict) -> dict:
        """
        Raises:
            UnknownDeliverableError: deliverable_type has no generator
        """
        method_name = GENERATOR_METHODS.get(deliverable_type)
        if method_name is None:
            raise UnknownDeliverableError(deliverable_type)
        return await asyncio.to_thread(getattr(self, method_name), context or {})


GENERATOR_METHODS = {
    "brief": "generate_brief",
    "prd": "generate_prd",
    "architecture": "generate_architecture",
    "epic": "generate_epic",
    "story": "generate_story",
    "qa_assessment": "generate_qa_assessment",
}
