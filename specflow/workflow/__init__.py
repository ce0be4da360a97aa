from .lanes import select_lane, select_lane_with_log
from .transition import PhaseTransitionMachine, TransitionHooks
