"""Tests for specflow.state.store module."""

import asyncio
import json
from unittest.mock import patch

import pytest

from specflow.lib.config import OrchestratorConfig
from specflow.lib.errors import StateWriteError
from specflow.lib.validate import SchemaError
from specflow.state import files
from specflow.state.store import ProjectStateStore


def make_store(tmp_path, **config_kwargs) -> ProjectStateStore:
    config = OrchestratorConfig(project_path=tmp_path, **config_kwargs)
    return ProjectStateStore(tmp_path, config)


def run(coro):
    return asyncio.run(coro)


class TestInitialize:
    """Creating and reloading project state."""

    def test_fresh_project(self, tmp_path):
        store = make_store(tmp_path, project_name="Shop")
        state = run(store.initialize())

        assert state["currentPhase"] == "analyst"
        assert state["projectId"].startswith("specflow-")
        assert state["projectName"] == "Shop"
        assert state["createdAt"]
        for name in ("state.json", "conversation.json", "deliverables.json", "reviews.json", "stories.json"):
            assert (tmp_path / ".specflow" / name).exists()

    def test_initialize_is_idempotent(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            first = await store.initialize()
            await store.add_message("user", "hello")
            second = await store.initialize()
            return first, second

        first, second = run(scenario())
        assert first["projectId"] == second["projectId"]
        assert len(store.get_conversation()) == 1

    def test_reload_in_new_instance(self, tmp_path):
        async def scenario():
            store = make_store(tmp_path)
            await store.initialize()
            await store.transition_phase("pm", {"reason": "brief done"})
            await store.record_decision("db", "postgres", "team knows it")

            reloaded = make_store(tmp_path)
            state = await reloaded.initialize()
            return store.get_state(), state

        before, after = run(scenario())
        assert after["projectId"] == before["projectId"]
        assert after["currentPhase"] == "pm"
        assert after["decisions"]["db"]["value"] == "postgres"

    def test_corrupt_file_degrades_alone(self, tmp_path, caplog):
        async def scenario():
            store = make_store(tmp_path)
            await store.initialize()
            await store.add_message("user", "keep me")
            await store.store_deliverable("brief", "# Brief")
            (tmp_path / ".specflow" / "conversation.json").write_text("{broken")

            reloaded = make_store(tmp_path)
            await reloaded.initialize()
            return reloaded

        reloaded = run(scenario())
        assert reloaded.get_conversation() == []
        assert reloaded.get_deliverable("analyst", "brief")["content"] == "# Brief"
        assert "Ignoring unreadable conversation.json" in caplog.text

    def test_state_without_project_id_gets_one(self, tmp_path):
        state_dir = tmp_path / ".specflow"
        state_dir.mkdir()
        (state_dir / "state.json").write_text(json.dumps({
            "currentPhase": "dev", "phaseHistory": [], "laneHistory": [],
        }))
        store = make_store(tmp_path)
        state = run(store.initialize())
        assert state["projectId"]
        assert state["currentPhase"] == "dev"


class TestMutations:
    """Append-only logs and last-write-wins decisions."""

    def test_transition_appends_history(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            first = await store.transition_phase("pm", {"a": 1})
            await store.transition_phase("architect")
            return first

        first = run(scenario())
        history = store.get_state()["phaseHistory"]
        assert [(h["from"], h["to"]) for h in history] == [("analyst", "pm"), ("pm", "architect")]
        assert history[0] == first
        assert store.current_phase == "architect"

    def test_transition_rejects_unknown_phase(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())
        with pytest.raises(ValueError, match="Unknown phase"):
            run(store.transition_phase("cto"))

    def test_messages_stamped_with_phase_at_insert(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.add_message("user", "idea")
            await store.transition_phase("pm")
            await store.add_message("assistant", "plan")

        run(scenario())
        conversation = store.get_conversation()
        assert [m["phase"] for m in conversation] == ["analyst", "pm"]
        assert store.get_phase_conversation("analyst")[0]["content"] == "idea"
        assert [m["content"] for m in store.get_conversation(limit=1)] == ["plan"]

    def test_earlier_entries_never_change(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.add_message("user", "one")
            await store.transition_phase("pm")
            snapshot = (store.get_conversation(), store.get_state()["phaseHistory"])
            await store.add_message("user", "two")
            await store.transition_phase("sm")
            await store.record_decision("k", 1)
            return snapshot

        conversation, history = run(scenario())
        assert store.get_conversation()[:1] == conversation
        assert store.get_state()["phaseHistory"][:1] == history

    def test_decision_last_write_wins(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.record_decision("framework", "vue", "first thought")
            return await store.record_decision("framework", "react", "team preference")

        record = run(scenario())
        decisions = store.get_state()["decisions"]
        assert list(decisions) == ["framework"]
        assert decisions["framework"] == record
        assert record["value"] == "react"
        assert record["phase"] == "analyst"

    def test_updated_at_refreshed(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())
        before = store.get_state()["updatedAt"]
        with patch("specflow.state.store.utc_now", return_value="2099-01-01T00:00:00+00:00"):
            run(store.update_requirements({"platform": "web"}))
        state = store.get_state()
        assert state["updatedAt"] == "2099-01-01T00:00:00+00:00"
        assert state["updatedAt"] != before
        assert state["requirements"] == {"platform": "web"}

    def test_update_state_shallow_merge(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.update_state({"customFlag": True, "nextSteps": "write PRD"})
            await store.update_preferences({"tone": "brief"})
            await store.set_next_steps("review PRD")

        run(scenario())
        state = store.get_state()
        assert state["customFlag"] is True
        assert state["nextSteps"] == "review PRD"
        assert state["userPreferences"] == {"tone": "brief"}

    def test_get_state_is_a_copy(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())
        state = store.get_state()
        state["phaseHistory"].append({"bogus": True})
        assert store.get_state()["phaseHistory"] == []


class TestWriteFailures:
    """Durable write failures surface and roll memory back."""

    def test_failed_write_raises_and_rolls_back(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())

        with patch("specflow.state.files.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(StateWriteError):
                run(store.transition_phase("pm"))

        assert store.current_phase == "analyst"
        assert store.get_state()["phaseHistory"] == []

        reloaded = make_store(tmp_path)
        assert run(reloaded.initialize())["currentPhase"] == "analyst"

    def test_invalid_update_is_refused_and_project_survives(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            state = await store.initialize()
            await store.transition_phase("pm")
            with pytest.raises(SchemaError, match="nextSteps"):
                await store.update_state({"nextSteps": None})
            return state["projectId"]

        project_id = run(scenario())
        assert store.get_state()["nextSteps"] == ""

        reloaded = make_store(tmp_path)
        state = run(reloaded.initialize())
        assert state["projectId"] == project_id
        assert state["currentPhase"] == "pm"
        assert len(state["phaseHistory"]) == 1

    def test_failed_write_restores_files_already_written(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())
        conversation_file = tmp_path / ".specflow" / "conversation.json"
        store.state_file.unlink()
        store.state_file.mkdir()

        with pytest.raises(StateWriteError):
            run(store.add_message("user", "lost"))

        assert store.get_conversation() == []
        assert json.loads(conversation_file.read_text()) == []

    def test_only_changed_files_are_written(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())

        with patch("specflow.state.files.write_json_group", wraps=files.write_json_group) as group:
            run(store.add_message("user", "hello"))

        written = [path.name for path, _ in group.call_args.args[0]]
        assert written == ["conversation.json", "state.json"]


class TestDeliverables:
    """Deliverable storage and the structured story cache."""

    def test_overwrite_same_type(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.store_deliverable("brief", "v1", {"author": "mary"})
            await store.store_deliverable("brief", "v2")

        run(scenario())
        phase = store.get_phase_deliverables("analyst")
        assert list(phase) == ["brief"]
        assert phase["brief"]["content"] == "v2"
        assert "author" not in phase["brief"]

    def test_metadata_merged_into_record(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            return await store.store_deliverable("prd", "# PRD", {"path": "docs/prd.md"})

        record = run(scenario())
        assert record["path"] == "docs/prd.md"
        assert record["content"] == "# PRD"
        assert store.has_deliverables()

    def test_explicit_phase(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.store_deliverable("prd", "# PRD", phase="pm")

        run(scenario())
        assert store.get_deliverable("pm", "prd")["content"] == "# PRD"
        assert store.get_phase_deliverables("analyst") == {}

    def test_story_cached_once_per_id(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.store_deliverable("story", "v1", {"title": "Login", "epicNumber": 1, "storyNumber": 2})
            await store.store_deliverable("story", "v2", {"title": "Login!", "epicNumber": 1, "storyNumber": 2})

        run(scenario())
        assert list(store.stories["records"]) == ["1.2"]
        assert store.stories["latestId"] == "1.2"
        story = store.get_story()
        assert story["title"] == "Login!"
        assert story["content"] == "v2"

    def test_latest_id_follows_most_recent(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.store_deliverable("story", "a", {"title": "A", "epicNumber": 1, "storyNumber": 1})
            await store.store_deliverable("story", "b", {"title": "B", "epicNumber": 1, "storyNumber": 2})

        run(scenario())
        assert store.get_story()["id"] == "1.2"
        assert store.get_story("1.1")["title"] == "A"
        assert store.get_story("9.9")["id"] == "1.2"

    def test_get_story_falls_back_to_stored_at(self, tmp_path):
        store = make_store(tmp_path)
        store.stories = {
            "records": {
                "a": {"id": "a", "storedAt": "2026-01-01"},
                "b": {"id": "b", "storedAt": "2026-03-01"},
                "c": {"id": "c"},
            },
            "latestId": None,
        }
        assert store.get_story()["id"] == "b"

    def test_get_story_first_record_and_empty(self, tmp_path):
        store = make_store(tmp_path)
        assert store.get_story() is None
        store.stories = {"records": {"x": {"id": "x"}}, "latestId": "gone"}
        assert store.get_story()["id"] == "x"

    def test_get_story_returns_copy(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.store_deliverable("story", "", {"title": "A", "epicNumber": 1, "storyNumber": 1})

        run(scenario())
        story = store.get_story()
        story["title"] = "mutated"
        story["acceptanceCriteria"].append("x")
        assert store.get_story()["title"] == "A"
        assert store.get_story()["acceptanceCriteria"] == []

    def test_legacy_story_map_loaded(self, tmp_path):
        state_dir = tmp_path / ".specflow"
        state_dir.mkdir()
        (state_dir / "state.json").write_text(json.dumps({
            "projectId": "p", "currentPhase": "sm", "phaseHistory": [], "laneHistory": [],
        }))
        (state_dir / "stories.json").write_text(json.dumps({"2.1": {"id": "2.1", "title": "Old"}}))

        store = make_store(tmp_path)
        run(store.initialize())
        assert store.get_story()["title"] == "Old"


class TestReviewsAndLanes:
    def test_review_outcomes_append(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            await store.record_review_outcome("prd", {"status": "approved"})
            await store.record_review_outcome("architecture", {"status": "changes"})

        run(scenario())
        history = store.get_review_history()
        assert [r["checkpoint"] for r in history] == ["prd", "architecture"]
        assert history[0]["status"] == "approved"
        assert store.get_review_history(limit=1)[0]["checkpoint"] == "architecture"

    def test_lane_decision_recorded(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            return await store.record_lane_decision(
                "quick", "small change", 0.8, "fix typo",
                level=0, level_score=-2, level_signals={"contributions": []}, level_rationale="Level 0",
            )

        entry = run(scenario())
        assert store.get_current_lane() == "quick"
        assert entry["level"] == 0
        assert entry["levelScore"] == -2
        assert entry["userMessage"] == "fix typo"
        assert store.get_lane_history() == [entry]

    def test_current_lane_defaults_to_complex(self, tmp_path):
        store = make_store(tmp_path)
        run(store.initialize())
        assert store.get_current_lane() == "complex"
        assert store.get_state()["currentLane"] is None


class TestIntegrations:
    def test_rotation_through_store(self, tmp_path):
        store = make_store(tmp_path, integration_log_cap=5)

        async def scenario():
            await store.initialize()
            for i in range(8):
                await store.apply_tweakcn_palette({"paletteId": f"p{i}", "name": f"Palette {i}"})

        run(scenario())
        palettes = store.get_tweakcn_palettes()
        assert [p["paletteId"] for p in palettes] == ["p3", "p4", "p5", "p6", "p7"]
        assert store.get_integration("tweakcn")["activePaletteId"] == "p7"

    def test_drawbridge_queue(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            return await store.record_drawbridge_ingestion({
                "packId": "pack",
                "mode": "review",
                "tasks": [{"id": "t1", "status": "open"}, {"id": "t2", "status": "resolved"}],
            })

        record = run(scenario())
        assert record["ingestionId"].startswith("ingestion-")
        assert [t["id"] for t in store.get_drawbridge_review_queue()] == ["t1"]
        assert len(store.get_drawbridge_review_queue(include_resolved=True)) == 2
        assert store.get_integration("drawbridge")["lastMode"] == "review"

    def test_returned_record_is_copy(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            return await store.record_shadcn_component_installation({"components": ["button"]})

        record = run(scenario())
        record["components"].append("hacked")
        assert store.get_shadcn_component_installations()[0]["components"] == ["button"]


class TestSummaryAndClear:
    def test_summary(self, tmp_path):
        store = make_store(tmp_path, project_name="Shop")

        async def scenario():
            await store.initialize()
            await store.add_message("user", "hi")
            await store.store_deliverable("brief", "b")
            await store.transition_phase("pm")
            await store.store_deliverable("prd", "p")

        run(scenario())
        summary = store.get_summary()
        assert summary["projectName"] == "Shop"
        assert summary["currentPhase"] == "pm"
        assert summary["currentLane"] is None
        assert summary["phaseCount"] == 1
        assert summary["messageCount"] == 1
        assert summary["deliverableCount"] == 2

    def test_export_for_llm(self, tmp_path):
        store = make_store(tmp_path)

        async def scenario():
            await store.initialize()
            for i in range(12):
                await store.add_message("user", f"m{i}")

        run(scenario())
        export = store.export_for_llm()
        assert len(export["recentConversation"]) == 10
        assert export["recentConversation"][0]["content"] == "m2"
        assert export["currentPhase"] == "analyst"

    def test_artifacts(self, tmp_path):
        store = make_store(tmp_path)
        assert run(store.get_artifacts()) == {"exists": False, "artifacts": [], "count": 0}

        (tmp_path / "docs" / "stories").mkdir(parents=True)
        (tmp_path / "docs" / "prd.md").write_text("# PRD")
        (tmp_path / "docs" / "stories" / "story-1.md").write_text("# S")
        (tmp_path / "docs" / "notes.txt").write_text("x")

        result = run(store.get_artifacts())
        assert result["count"] == 2
        assert result["artifacts"] == ["prd.md", "stories/story-1.md"]

    def test_clear_resets_identity_keeps_config(self, tmp_path):
        state_dir = tmp_path / ".specflow"
        state_dir.mkdir()
        (state_dir / "config.env").write_text("LLM_MODEL=opus\n")
        store = make_store(tmp_path)

        async def scenario():
            first = await store.initialize()
            await store.transition_phase("dev")
            await store.add_message("user", "x")
            second = await store.clear()
            return first, second

        first, second = run(scenario())
        assert second["projectId"] != first["projectId"]
        assert second["currentPhase"] == "analyst"
        assert second["phaseHistory"] == []
        assert store.get_conversation() == []
        assert (state_dir / "config.env").exists()
