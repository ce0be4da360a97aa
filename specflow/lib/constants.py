"""Shared constants for the orchestrator."""

PHASES = ("analyst", "pm", "architect", "sm", "dev", "qa", "ux", "po")
INITIAL_PHASE = "analyst"

LANES = ("quick", "complex")
DEFAULT_LANE = "complex"

DELIVERABLE_TYPES = ("brief", "prd", "architecture", "epic", "story", "qa_assessment")

# Which agent persona handles each phase
PHASE_AGENTS = {
    "analyst": "analyst",
    "pm": "pm",
    "architect": "architect",
    "sm": "sm",
    "dev": "dev",
    "qa": "qa",
    "ux": "ux-expert",
    "po": "po",
}

PHASE_DETECTOR_AGENT = "phase-detector"

# Phases that need explicit user sign-off before handle_transition proceeds
GATED_PHASES = ("pm", "architect", "dev")

STATE_DIR_NAME = ".specflow"
DEFAULT_INTEGRATION_CAP = 100


def phase_agent(phase: str) -> str:
    """Return the agent id for a phase, falling back to the analyst."""
    return PHASE_AGENTS.get(phase, "analyst")
