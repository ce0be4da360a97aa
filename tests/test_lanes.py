"""Tests for specflow.workflow.lanes module."""

import asyncio

import pytest

from specflow.lib.config import OrchestratorConfig
from specflow.state.store import ProjectStateStore
from specflow.workflow.lanes import (
    DECISION_LOG_FILE,
    COMPLEX_KEYWORDS,
    _matches,
    assess_scale,
    get_decision_history,
    plan_phase_progression,
    select_lane,
    select_lane_with_log,
)


class TestSelectLane:
    """Test select_lane scoring."""

    def test_forced_lane(self):
        decision = select_lane("Implement a whole new platform", {"forceLane": "quick"})
        assert decision["lane"] == "quick"
        assert decision["confidence"] == 1.0
        assert decision["rationale"] == "forced"

    def test_forced_unknown_lane(self):
        with pytest.raises(ValueError, match="Unknown lane"):
            select_lane("anything", {"forceLane": "medium"})

    def test_typo_fix_is_quick(self):
        decision = select_lane("fix typo in README.md")
        assert decision["lane"] == "quick"
        # typo + fix typo (6), single file (2), short action request (2)
        assert decision["scores"] == {"quick": 10, "complex": 0}
        assert decision["confidence"] == 0.95
        assert "single-file scope" in decision["factors"]

    def test_landing_page_is_quick(self):
        decision = select_lane("Build a quick landing page")
        assert decision["lane"] == "quick"
        assert decision["scores"] == {"quick": 6, "complex": 3}
        assert decision["confidence"] == pytest.approx(0.6667)

    def test_complex_keywords(self):
        decision = select_lane("Implement user authentication with a database and an API for the system")
        assert decision["lane"] == "complex"
        assert decision["scores"]["complex"] == 12
        assert decision["confidence"] == 0.95
        assert decision["rationale"].startswith("Complex lane:")

    def test_no_signals_defaults_to_complex(self):
        decision = select_lane("hello there")
        assert decision["lane"] == "complex"
        assert decision["confidence"] == 0.5
        assert decision["scores"] == {"quick": 0, "complex": 0}

    def test_tie_leans_quick(self):
        decision = select_lane("simple api")
        assert decision["scores"] == {"quick": 3, "complex": 3}
        assert decision["lane"] == "quick"
        assert decision["confidence"] == 0.6

    def test_project_history_pushes_complex(self):
        quick_only = select_lane("tweak the header colour")
        assert quick_only["lane"] == "quick"

        decision = select_lane("tweak the header colour", {"previousPhase": "pm", "hasExistingPRD": True})
        assert decision["scores"] == {"quick": 3, "complex": 6}
        assert decision["lane"] == "complex"
        assert "existing planning documents" in decision["factors"]

    def test_question_counts_as_complex(self):
        decision = select_lane("what should we do here?")
        assert decision["scores"] == {"quick": 0, "complex": 1}
        assert decision["lane"] == "complex"

    def test_decision_includes_scale(self):
        decision = select_lane("fix typo in README.md")
        assert decision["scale"]["level"] == 0


class TestKeywordMatching:
    def test_whole_words_only(self):
        assert _matches("the apiary opens", COMPLEX_KEYWORDS) == []
        assert _matches("call the api", COMPLEX_KEYWORDS) == ["api"]


class TestAssessScale:
    """Level mapping and keyword floors."""

    def test_trivial_request(self):
        scale = assess_scale("fix typo in README.md")
        assert scale.score == -5
        assert scale.level == 0

    def test_moderate_request(self):
        scale = assess_scale("refactor the database layer")
        assert scale.score == 4
        assert scale.level == 2

    def test_high_complexity_context(self):
        assert assess_scale("refactor").level == 1
        scale = assess_scale("refactor", {"projectComplexity": "high"})
        assert scale.score == 4
        assert scale.level == 2

    def test_large_score(self):
        scale = assess_scale("Implement user authentication with a database and an API for the system")
        assert scale.score == 10
        assert scale.level == 4

    def test_level_three_keyword_floor(self):
        scale = assess_scale("add a payment page")
        assert scale.score == 3
        assert scale.level == 3
        assert scale.keyword_matches["level3"] == ["payment"]
        assert "level-3 signals: payment" in scale.rationale

    def test_level_four_keyword_forces(self):
        scale = assess_scale("enterprise dashboard")
        assert scale.score == 4
        assert scale.level == 4

    def test_to_dict(self):
        data = assess_scale("refactor").to_dict()
        assert set(data) == {"level", "score", "rationale", "signals"}
        assert data["signals"]["contributions"] == [{"signal": "complex-keywords", "points": 2}]


class TestDecisionLog:
    """select_lane_with_log records on the store and the jsonl log."""

    def make_store(self, tmp_path, **kwargs):
        store = ProjectStateStore(tmp_path, OrchestratorConfig(project_path=tmp_path, **kwargs))
        asyncio.run(store.initialize())
        return store

    def test_records_and_logs(self, tmp_path):
        store = self.make_store(tmp_path)

        async def scenario():
            await select_lane_with_log(store, "fix typo in README.md")
            await select_lane_with_log(store, "refactor the database layer")

        asyncio.run(scenario())

        assert store.get_current_lane() == "complex"
        history = store.get_lane_history()
        assert [h["lane"] for h in history] == ["quick", "complex"]
        assert history[1]["level"] == 2
        assert history[1]["levelScore"] == 4

        logged = get_decision_history(store.state_dir)
        assert [entry["lane"] for entry in logged] == ["quick", "complex"]
        assert logged[0]["userMessage"] == "fix typo in README.md"
        assert logged[0]["level"] == 0
        assert get_decision_history(store.state_dir, limit=1)[0]["lane"] == "complex"

    def test_log_disabled(self, tmp_path):
        store = self.make_store(tmp_path, decision_log=False)
        asyncio.run(select_lane_with_log(store, "hello"))
        assert not (store.state_dir / DECISION_LOG_FILE).exists()
        assert store.get_current_lane() == "complex"


class TestPlanPhaseProgression:
    def test_quick_plan(self):
        assert plan_phase_progression("quick") == [
            {"stage": "analysis-lite", "phases": ["analyst"]},
            {"stage": "development", "phases": ["dev"]},
        ]

    def test_complex_plan(self):
        stages = plan_phase_progression("complex")
        assert [s["stage"] for s in stages] == ["analysis", "planning", "development"]
        assert stages[1]["phases"] == ["pm", "architect", "ux"]

    def test_unknown_lane(self):
        with pytest.raises(ValueError):
            plan_phase_progression("turbo")
