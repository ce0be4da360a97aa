"""
Lane selection.

Decides whether a request goes down the quick lane (templated, single pass)
or the complex lane (full multi-phase agent pipeline). select_lane() is a
pure function of the message and the context signals; recording the
decision is the caller's job, or select_lane_with_log()'s.

Scoring: every keyword hit is worth KEYWORD_WEIGHT to its lane, structural
signals (file scope, message length, project history) add smaller amounts.
Quick has to clearly beat complex (by QUICK_MARGIN) to win; ties and
no-signal messages go to complex.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from specflow.lib.constants import DEFAULT_LANE, LANES
from specflow.state.files import append_jsonl, read_jsonl

logger = logging.getLogger(__name__)

DECISION_LOG_FILE = "decisions.jsonl"

QUICK_FIX_KEYWORDS = [
    "typo", "fix typo", "spelling",
    "add flag", "add option", "add config", "update config", "change flag",
    "toggle", "enable", "disable",
    "remove console", "comment",
    "rename variable", "fix import", "update import",
    "small bugfix", "quick fix", "minor fix",
    "quick", "simple", "small", "tweak",
    "landing page", "prototype", "mockup", "one-pager", "single page",
]

COMPLEX_KEYWORDS = [
    "new feature", "add feature", "implement", "build", "create system",
    "architecture", "refactor", "redesign", "integrate", "integration",
    "authentication", "authorization", "database", "api", "security",
    "multi-component", "cross-cutting", "performance", "scalability",
]

# Keywords that pin the scale level regardless of score
LEVEL_3_KEYWORDS = ["microservice", "migration", "distributed", "real-time", "payment"]
LEVEL_4_KEYWORDS = [
    "enterprise", "multi-region", "regulatory compliance", "platform overhaul",
    "multi-tenant", "compliance",
]

ACTION_WORDS = ("add", "remove", "fix", "update", "change")

KEYWORD_WEIGHT = 3
QUICK_MARGIN = 1.5
MAX_CONFIDENCE = 0.95
SHORT_MESSAGE = 100
LONG_MESSAGE = 200

SINGLE_FILE_PATTERN = re.compile(r"\b(?:in|to|from)\s+(?:the\s+)?[\w./-]+\.\w{1,5}\b|\bsingle file\b|\bone file\b")
MULTI_FILE_PATTERN = re.compile(r"\b(?:multiple|several|many|all)\s+(?:files|components|modules|services)\b|\bacross\b")

# Phase blueprints per lane: (stage, phases run in that stage)
PHASE_BLUEPRINTS = {
    "quick": [
        ("analysis-lite", ["analyst"]),
        ("development", ["dev"]),
    ],
    "complex": [
        ("analysis", ["analyst"]),
        ("planning", ["pm", "architect", "ux"]),
        ("development", ["sm", "dev", "qa"]),
    ],
}


@dataclass
class ScaleAssessment:
    """Rough project size, level 0 (trivial) to 4 (enterprise)."""
    level: int
    score: int
    rationale: str
    contributions: list[dict] = field(default_factory=list)
    deductions: list[dict] = field(default_factory=list)
    keyword_matches: dict = field(default_factory=dict)

    @property
    def signals(self) -> dict:
        return {
            "contributions": list(self.contributions),
            "deductions": list(self.deductions),
            "keywordMatches": dict(self.keyword_matches),
        }

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "score": self.score,
            "rationale": self.rationale,
            "signals": self.signals,
        }


def _matches(message: str, keywords: list[str]) -> list[str]:
    return [keyword for keyword in keywords if re.search(rf"\b{re.escape(keyword)}\b", message)]


def _file_scope(message: str) -> Optional[str]:
    if MULTI_FILE_PATTERN.search(message):
        return "multi"
    if SINGLE_FILE_PATTERN.search(message):
        return "single"
    return None


def assess_scale(user_message: str, context: dict | None = None) -> ScaleAssessment:
    """Score how large the request is.

    Levels: score <= 0 -> 0, 1-3 -> 1, 4-5 -> 2, 6-7 -> 3, 8+ -> 4.
    A level-4 keyword forces level 4; a level-3 keyword raises to at least 3.
    """
    context = context or {}
    message = (user_message or "").lower()

    quick_hits = _matches(message, QUICK_FIX_KEYWORDS)
    complex_hits = _matches(message, COMPLEX_KEYWORDS)
    level3_hits = _matches(message, LEVEL_3_KEYWORDS)
    level4_hits = _matches(message, LEVEL_4_KEYWORDS)
    scope = _file_scope(message)

    contributions = []
    deductions = []
    if complex_hits:
        contributions.append({"signal": "complex-keywords", "points": 2 * len(complex_hits)})
    if re.search(r"\bsystem\b", message):
        contributions.append({"signal": "system", "points": 2})
    if scope == "multi":
        contributions.append({"signal": "multi-file", "points": 1})
    if len(message) > LONG_MESSAGE:
        contributions.append({"signal": "long-message", "points": 1})
    if level3_hits:
        contributions.append({"signal": "level-3-keywords", "points": 3 * len(level3_hits)})
    if level4_hits:
        contributions.append({"signal": "level-4-keywords", "points": 4 * len(level4_hits)})
    if context.get("projectComplexity") == "high":
        contributions.append({"signal": "high-complexity", "points": 2})

    if quick_hits:
        deductions.append({"signal": "quick-keywords", "points": 2 * len(quick_hits)})
    if scope == "single":
        deductions.append({"signal": "single-file", "points": 1})

    score = sum(c["points"] for c in contributions) - sum(d["points"] for d in deductions)

    if score <= 0:
        level = 0
    elif score <= 3:
        level = 1
    elif score <= 5:
        level = 2
    elif score <= 7:
        level = 3
    else:
        level = 4

    if level4_hits:
        level = 4
    elif level3_hits:
        level = max(level, 3)

    parts = [f"score {score}"]
    if level4_hits:
        parts.append(f"enterprise signals: {', '.join(level4_hits)}")
    elif level3_hits:
        parts.append(f"level-3 signals: {', '.join(level3_hits)}")

    return ScaleAssessment(
        level=level,
        score=score,
        rationale=f"Level {level} ({'; '.join(parts)})",
        contributions=contributions,
        deductions=deductions,
        keyword_matches={
            "quick": quick_hits,
            "complex": complex_hits,
            "level3": level3_hits,
            "level4": level4_hits,
        },
    )


def select_lane(user_message: str, context: dict | None = None) -> dict:
    """Pick a lane for a request.

    Args:
        user_message: The raw request text
        context: Signals: previousPhase, hasExistingPRD, projectComplexity,
            forceLane (hard override)

    Returns:
        {lane, confidence, rationale, factors, scores, scale}
    """
    context = context or {}
    scale = assess_scale(user_message, context).to_dict()

    forced = context.get("forceLane")
    if forced:
        if forced not in LANES:
            raise ValueError(f"Unknown lane: {forced}")
        return {
            "lane": forced,
            "confidence": 1.0,
            "rationale": "forced",
            "factors": [],
            "scores": {"quick": 0, "complex": 0},
            "scale": scale,
        }

    message = (user_message or "").lower()
    quick = 0
    complex_ = 0
    factors = []

    quick_hits = _matches(message, QUICK_FIX_KEYWORDS)
    if quick_hits:
        quick += KEYWORD_WEIGHT * len(quick_hits)
        factors.append(f"quick keywords: {', '.join(quick_hits)}")

    complex_hits = _matches(message, COMPLEX_KEYWORDS)
    if complex_hits:
        complex_ += KEYWORD_WEIGHT * len(complex_hits)
        factors.append(f"complex keywords: {', '.join(complex_hits)}")

    scope = _file_scope(message)
    if scope == "single":
        quick += 2
        factors.append("single-file scope")
    elif scope == "multi":
        complex_ += 3
        factors.append("multi-file scope")

    if len(message) < SHORT_MESSAGE and any(re.search(rf"\b{word}\b", message) for word in ACTION_WORDS):
        quick += 2
        factors.append("short, specific request")
    elif len(message) > LONG_MESSAGE:
        complex_ += 1
        factors.append("detailed request")

    if "?" in message:
        complex_ += 1
        factors.append("open question")

    if context.get("previousPhase"):
        complex_ += 3
        factors.append(f"continuing from {context['previousPhase']} phase")
    if context.get("hasExistingPRD"):
        complex_ += 3
        factors.append("existing planning documents")
    if context.get("projectComplexity") == "high":
        complex_ += 3
        factors.append("high project complexity")

    total = quick + complex_
    if total == 0:
        lane, confidence = DEFAULT_LANE, 0.5
        rationale = "No clear signals, defaulting to the complex lane"
    elif quick > complex_ * QUICK_MARGIN:
        lane = "quick"
        confidence = min(quick / total, MAX_CONFIDENCE)
        rationale = f"Quick lane: {'; '.join(factors)}"
    elif complex_ > quick:
        lane = "complex"
        confidence = complex_ / total
        if len(complex_hits) > 2:
            confidence += 0.1
        confidence = min(confidence, MAX_CONFIDENCE)
        rationale = f"Complex lane: {'; '.join(factors)}"
    else:
        lane, confidence = "quick", 0.6
        rationale = f"Mixed signals, leaning quick: {'; '.join(factors)}"

    logger.debug(f"[LANE] {lane} ({confidence:.2f}) quick={quick} complex={complex_}")
    return {
        "lane": lane,
        "confidence": round(confidence, 4),
        "rationale": rationale,
        "factors": factors,
        "scores": {"quick": quick, "complex": complex_},
        "scale": scale,
    }


def log_decision(state_dir: Path, user_message: str, decision: dict, timestamp: str) -> None:
    """Append one decision to the lane decision log."""
    append_jsonl(state_dir / DECISION_LOG_FILE, {
        "timestamp": timestamp,
        "userMessage": user_message,
        "lane": decision["lane"],
        "confidence": decision["confidence"],
        "rationale": decision["rationale"],
        "level": decision.get("scale", {}).get("level"),
    })


def get_decision_history(state_dir: Path, limit: int = 10) -> list[dict]:
    """Most recent logged decisions, oldest first."""
    entries = read_jsonl(state_dir / DECISION_LOG_FILE)
    return entries[-limit:] if limit > 0 else entries


async def select_lane_with_log(store, user_message: str, context: dict | None = None) -> dict:
    """Select a lane and record it on the store (and the decision log if enabled)."""
    decision = select_lane(user_message, context)
    scale = decision["scale"]
    entry = await store.record_lane_decision(
        decision["lane"],
        decision["rationale"],
        decision["confidence"],
        user_message,
        level=scale["level"],
        level_score=scale["score"],
        level_signals=scale["signals"],
        level_rationale=scale["rationale"],
    )
    if store.config.decision_log:
        log_decision(store.state_dir, user_message, decision, entry["timestamp"])
    logger.info(f"[LANE] Selected {decision['lane']} lane ({decision['confidence']:.2f})")
    return decision


def plan_phase_progression(lane: str) -> list[dict]:
    """Stage plan for a lane."""
    if lane not in PHASE_BLUEPRINTS:
        raise ValueError(f"Unknown lane: {lane}")
    return [{"stage": stage, "phases": list(phases)} for stage, phases in PHASE_BLUEPRINTS[lane]]
