"""specflow - invisible orchestrator for phase-driven specification workflows."""

__version__ = "0.4.0"
