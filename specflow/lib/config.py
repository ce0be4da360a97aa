"""
Configuration loader for specflow.

Project configuration lives in <project>/.specflow/config.env. Every key is
optional; a missing file yields the defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from . import envparse
from .constants import DEFAULT_INTEGRATION_CAP, STATE_DIR_NAME

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.env"
MODEL_ENV_VAR = "SPECFLOW_LLM_MODEL"

BUNDLED_PERSONAS_DIR = Path(__file__).resolve().parent.parent / "agents" / "personas"


@dataclass
class OrchestratorConfig:
    """Project-level configuration from config.env"""
    project_path: Path
    project_name: str | None = None
    docs_dir: str = "docs"  # Relative to project_path
    agents_dir: Path | None = None  # Persona directory, None = resolve at load
    llm_model: str = "sonnet"
    agent_timeout: int = 300
    integration_log_cap: int = DEFAULT_INTEGRATION_CAP
    decision_log: bool = True

    @property
    def state_dir(self) -> Path:
        return self.project_path / STATE_DIR_NAME

    @property
    def docs_path(self) -> Path:
        return self.project_path / self.docs_dir


def resolve_agents_dir(project_path: Path, configured: str | None) -> Path:
    """Pick the persona directory.

    Order: AGENTS_DIR from config, <project>/.specflow/agents if present,
    then the personas bundled with the package.
    """
    if configured:
        candidate = Path(configured)
        if not candidate.is_absolute():
            candidate = project_path / candidate
        return candidate

    local = project_path / STATE_DIR_NAME / "agents"
    if local.is_dir():
        return local
    return BUNDLED_PERSONAS_DIR


def load_config(project_path: Path) -> OrchestratorConfig:
    """Load config.env for a project and return OrchestratorConfig."""
    project_path = Path(project_path)
    env_path = project_path / STATE_DIR_NAME / CONFIG_FILENAME

    try:
        env = envparse.load_env(env_path)
    except ValueError as e:
        logger.warning(f"[CONFIG] Ignoring invalid {env_path}: {e}")
        env = {}

    cap = envparse.as_int(env.get("INTEGRATION_LOG_CAP"), DEFAULT_INTEGRATION_CAP)
    if cap < 1:
        raise ValueError(f"INTEGRATION_LOG_CAP must be positive, got {cap}")

    return OrchestratorConfig(
        project_path=project_path,
        project_name=env.get("PROJECT_NAME") or None,
        docs_dir=env.get("DOCS_DIR", "docs"),
        agents_dir=resolve_agents_dir(project_path, env.get("AGENTS_DIR")),
        llm_model=os.environ.get(MODEL_ENV_VAR) or env.get("LLM_MODEL", "sonnet"),
        agent_timeout=envparse.as_int(env.get("AGENT_TIMEOUT"), 300),
        integration_log_cap=cap,
        decision_log=envparse.as_bool(env.get("DECISION_LOG"), default=True),
    )
