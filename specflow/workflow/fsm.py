"""Phase state machine using the transitions library.

Any phase may move to any other phase; legality beyond that (user sign-off
on gated phases) is decided by PhaseTransitionMachine, not here. The FSM is
the in-memory model of the current phase: the transition machine only fires
`advance` once the pipeline has produced everything it needs, and the
after_state_change callback is where the move gets committed. If the commit
fails the model is put back on the source phase.

Usage:
    from specflow.workflow.fsm import PhaseFSM

    fsm = PhaseFSM("analyst", on_transition=commit)
    await fsm.advance(to="pm")
"""

import logging
from typing import Awaitable, Callable

from transitions.extensions.asyncio import AsyncMachine

from specflow.lib.constants import INITIAL_PHASE, PHASES

logger = logging.getLogger(__name__)

STATES = list(PHASES)

# One trigger; the destination is picked at call time by the `to` argument
TRANSITIONS = [
    {"trigger": "advance", "source": source, "dest": dest, "conditions": f"_is_{dest}"}
    for source in STATES
    for dest in STATES
]


class PhaseFSM:
    """In-memory phase model.

    on_transition(from_phase, to_phase, event) is awaited after every change.
    """

    def __init__(
        self,
        initial: str = INITIAL_PHASE,
        on_transition: Callable[[str, str, object], Awaitable[None]] | None = None,
    ):
        if initial not in STATES:
            logger.warning(f"[FSM] Unknown phase '{initial}', defaulting to '{INITIAL_PHASE}'")
            initial = INITIAL_PHASE
        self.on_transition = on_transition

        for dest in STATES:
            setattr(self, f"_is_{dest}", self._make_guard(dest))

        self.machine = AsyncMachine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    @staticmethod
    def _make_guard(dest: str) -> Callable:
        def guard(event) -> bool:
            return event.kwargs.get("to") == dest
        return guard

    async def on_state_change(self, event) -> None:
        from_phase = event.transition.source
        to_phase = event.transition.dest
        if self.on_transition is None:
            logger.info(f"[FSM] {from_phase} -> {to_phase}")
            return

        try:
            await self.on_transition(from_phase, to_phase, event)
        except Exception:
            self.machine.set_state(from_phase)
            raise
        logger.info(f"[FSM] {from_phase} -> {to_phase}")

    def sync(self, phase: str) -> None:
        """Reset the model to phase without firing callbacks."""
        if phase not in STATES:
            raise ValueError(f"Unknown phase: {phase}")
        self.machine.set_state(phase)
