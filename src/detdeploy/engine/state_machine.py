"""Run state machine — enforces the order of deployment steps.

Transitions are fail-closed: any transition not explicitly listed is
rejected. There is no path from DEPLOY to PERSIST that bypasses
post-deploy verification or the ownership decision.
"""

from __future__ import annotations

from typing import Optional

from detdeploy.models.deployment import RunStep


# Legal transitions: (from_step, to_step)
_TRANSITIONS: set[tuple[Optional[RunStep], RunStep]] = {
    (None, RunStep.INIT),
    (RunStep.INIT, RunStep.CHECK_EXISTING),
    (RunStep.CHECK_EXISTING, RunStep.DEPLOY),
    (RunStep.CHECK_EXISTING, RunStep.SKIP_TO_VERIFY),
    (RunStep.DEPLOY, RunStep.POST_INIT),
    (RunStep.POST_INIT, RunStep.POST_VERIFY),
    (RunStep.POST_VERIFY, RunStep.OWNERSHIP_DECISION),
    (RunStep.OWNERSHIP_DECISION, RunStep.TRANSFER),
    (RunStep.OWNERSHIP_DECISION, RunStep.PERSIST),
    (RunStep.TRANSFER, RunStep.PERSIST),
    (RunStep.PERSIST, RunStep.DONE),
    (RunStep.SKIP_TO_VERIFY, RunStep.DONE),
}

# A dry run never transfers or persists.
_SIMULATION_TRANSITIONS: set[tuple[Optional[RunStep], RunStep]] = {
    (RunStep.OWNERSHIP_DECISION, RunStep.DONE),
}


class TransitionError(Exception):
    """Raised when a step transition is not allowed."""


class RunStateMachine:
    """Tracks the completed steps of one run."""

    def __init__(self, simulation: bool = False) -> None:
        self._allowed = _TRANSITIONS | (_SIMULATION_TRANSITIONS if simulation else set())
        self._completed: list[RunStep] = []

    @property
    def current(self) -> Optional[RunStep]:
        """The last completed step, or None before INIT."""
        return self._completed[-1] if self._completed else None

    @property
    def completed(self) -> list[RunStep]:
        return list(self._completed)

    @property
    def finished(self) -> bool:
        return self.current == RunStep.DONE

    def can_advance(self, target: RunStep) -> bool:
        return (self.current, target) in self._allowed

    def advance(self, target: RunStep) -> None:
        if not self.can_advance(target):
            source = self.current.value if self.current else "start"
            raise TransitionError(f"Illegal transition: {source} → {target.value}")
        self._completed.append(target)
