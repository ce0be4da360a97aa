"""
Quick lane.

One pass, three agent calls, each feeding the next:
    spec  (pm)        -> docs/prd.md
    plan  (architect) -> docs/architecture.md
    tasks (sm)        -> docs/stories/story-<n>.md, one per task
"""

import asyncio
import json
import logging
import re
from pathlib import Path

from .base import Empty, Text, to_raw_response

logger = logging.getLogger(__name__)

SPEC_TASK = """Write a concise specification for this request. Cover the problem,
the users, functional requirements and acceptance criteria. Focus on what and
why, not implementation.

Request: {request}"""

PLAN_TASK = """Write an implementation plan for this specification: architecture,
files to change and the approach. Focus on how to build it.

{spec}"""

TASKS_TASK = """Break this plan into ordered tasks, each completable in one sitting.
Start each task with a heading of the form "### Task <n>: <title>".

{plan}"""

TASK_HEADING = re.compile(r"^(?:###\s+Task\s+\d+:|-\s+\[\s*\]\s+\*\*Task\s+\d+:)", re.IGNORECASE | re.MULTILINE)


def response_text(raw) -> str:
    """Plain text from an agent response, whatever shape it came in."""
    response = to_raw_response(raw)
    if isinstance(response, Empty):
        return ""
    if isinstance(response, Text):
        return response.text
    value = response.value
    if isinstance(value, dict):
        for key in ("content", "text", "result"):
            if isinstance(value.get(key), str):
                return value[key].strip()
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, indent=2)


def split_tasks(tasks: str) -> list[str]:
    """One story body per task heading, each prefixed with the shared header."""
    headings = TASK_HEADING.findall(tasks)
    if not headings:
        return [tasks]

    parts = TASK_HEADING.split(tasks)
    header = parts[0].strip()
    stories = []
    for index, (heading, body) in enumerate(zip(headings, parts[1:]), start=1):
        stories.append(f"# Story {index}\n\n{header}\n\n{heading}{body}".rstrip() + "\n")
    return stories


class QuickLaneExecutor:
    def __init__(self, agent_runner, project_path: Path, docs_dir: str = "docs"):
        self.agent_runner = agent_runner
        self.project_path = Path(project_path)
        self.docs_path = self.project_path / docs_dir

    async def _ask(self, agent_id: str, task: str, context: dict) -> str:
        raw = await self.agent_runner.run_agent(agent_id, {**context, "task": task})
        return response_text(raw)

    def _write(self, relative: str, content: str) -> str:
        path = self.docs_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return str(path.relative_to(self.project_path))

    async def execute(self, user_request: str, context: dict | None = None) -> dict:
        context = context or {}
        result = {"userRequest": user_request, "files": [], "artifacts": {}}

        logger.info("[AGENT] Quick lane: generating specification")
        spec = await self._ask("pm", SPEC_TASK.format(request=user_request), context)
        result["files"].append(await asyncio.to_thread(self._write, "prd.md", spec))
        result["artifacts"]["prd"] = spec

        logger.info("[AGENT] Quick lane: generating implementation plan")
        plan = await self._ask("architect", PLAN_TASK.format(spec=spec), context)
        result["files"].append(await asyncio.to_thread(self._write, "architecture.md", plan))
        result["artifacts"]["architecture"] = plan

        logger.info("[AGENT] Quick lane: generating task breakdown")
        tasks = await self._ask("sm", TASKS_TASK.format(plan=plan), context)
        stories = split_tasks(tasks)
        if len(stories) == 1 and stories[0] == tasks:
            result["files"].append(await asyncio.to_thread(self._write, "stories/story-1-implementation.md", tasks))
        else:
            for index, story in enumerate(stories, start=1):
                result["files"].append(await asyncio.to_thread(self._write, f"stories/story-{index}.md", story))
        result["artifacts"]["stories"] = tasks

        return result

    def get_status(self) -> dict:
        stories_dir = self.docs_path / "stories"
        stories = list(stories_dir.glob("*.md")) if stories_dir.is_dir() else []
        prd = (self.docs_path / "prd.md").exists()
        architecture = (self.docs_path / "architecture.md").exists()
        return {
            "executed": prd and architecture,
            "files": {"prd": prd, "architecture": architecture, "storiesCount": len(stories)},
        }
