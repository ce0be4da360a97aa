"""Tests for specflow.workflow.fsm module."""

import asyncio

import pytest

from specflow.workflow.fsm import PhaseFSM, STATES, TRANSITIONS


class TestFSMStates:
    """Tests for FSM state definitions."""

    def test_all_phases_are_states(self):
        assert STATES == ["analyst", "pm", "architect", "sm", "dev", "qa", "ux", "po"]

    def test_every_pair_has_a_transition(self):
        assert len(TRANSITIONS) == len(STATES) ** 2
        assert all(t["trigger"] == "advance" for t in TRANSITIONS)


class TestFSMBasic:
    """Basic FSM functionality tests."""

    def test_default_initial_state(self):
        assert PhaseFSM().state == "analyst"

    def test_initial_state(self):
        assert PhaseFSM("architect").state == "architect"

    def test_unknown_initial_defaults(self, caplog):
        fsm = PhaseFSM("cto")
        assert fsm.state == "analyst"
        assert "Unknown phase 'cto'" in caplog.text

    def test_advance_without_callback(self):
        fsm = PhaseFSM()
        assert asyncio.run(fsm.advance(to="dev")) is True
        assert fsm.state == "dev"

    def test_advance_to_unknown_does_nothing(self):
        fsm = PhaseFSM("pm")
        assert asyncio.run(fsm.advance(to="cto")) is False
        assert fsm.state == "pm"

    def test_sync(self):
        fsm = PhaseFSM()
        fsm.sync("qa")
        assert fsm.state == "qa"

    def test_sync_unknown(self):
        with pytest.raises(ValueError, match="Unknown phase"):
            PhaseFSM().sync("cto")


class TestFSMCommitCallback:
    """on_transition is where the move gets committed."""

    def test_callback_receives_phases_and_kwargs(self):
        seen = []

        async def commit(from_phase, to_phase, event):
            seen.append((from_phase, to_phase, event.kwargs.get("context")))

        fsm = PhaseFSM("analyst", on_transition=commit)
        asyncio.run(fsm.advance(to="pm", context={"reason": "brief done"}))

        assert seen == [("analyst", "pm", {"reason": "brief done"})]
        assert fsm.state == "pm"

    def test_failed_commit_restores_source(self):
        async def commit(from_phase, to_phase, event):
            raise OSError("disk full")

        fsm = PhaseFSM("sm", on_transition=commit)
        with pytest.raises(OSError):
            asyncio.run(fsm.advance(to="dev"))
        assert fsm.state == "sm"

    def test_sequence(self):
        history = []

        async def commit(from_phase, to_phase, event):
            history.append(f"{from_phase}->{to_phase}")

        fsm = PhaseFSM(on_transition=commit)

        async def run():
            for phase in ("pm", "architect", "sm", "dev"):
                await fsm.advance(to=phase)

        asyncio.run(run())
        assert history == ["analyst->pm", "pm->architect", "architect->sm", "sm->dev"]
