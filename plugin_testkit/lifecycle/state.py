"""
Lifecycle state machine for one sample run against a cluster.

    NotStarted -> DependenciesInstalled -> ImageBuilt -> Deployed -> Verified -> TornDown

Failed is reachable from any non-terminal state; TornDown is reachable
from every state, Failed included, because teardown is always attempted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from plugin_testkit.exceptions import LifecycleTransitionError

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    NOT_STARTED = "NotStarted"
    DEPENDENCIES_INSTALLED = "DependenciesInstalled"
    IMAGE_BUILT = "ImageBuilt"
    DEPLOYED = "Deployed"
    VERIFIED = "Verified"
    FAILED = "Failed"
    TORN_DOWN = "TornDown"

    @property
    def is_terminal(self) -> bool:
        return self is LifecycleState.TORN_DOWN


# Forward progress only; FAILED and TORN_DOWN are handled in can_transition
_NEXT_STATE = {
    LifecycleState.NOT_STARTED: LifecycleState.DEPENDENCIES_INSTALLED,
    LifecycleState.DEPENDENCIES_INSTALLED: LifecycleState.IMAGE_BUILT,
    LifecycleState.IMAGE_BUILT: LifecycleState.DEPLOYED,
    LifecycleState.DEPLOYED: LifecycleState.VERIFIED,
}


def can_transition(current: LifecycleState, requested: LifecycleState) -> bool:
    """Whether ``current -> requested`` is a legal transition."""
    if current.is_terminal:
        return False
    if requested is LifecycleState.TORN_DOWN:
        return True
    if requested is LifecycleState.FAILED:
        return current is not LifecycleState.FAILED
    return _NEXT_STATE.get(current) is requested


@dataclass(frozen=True)
class StateChange:
    """One recorded transition."""

    state: LifecycleState
    at: datetime

    def to_dict(self) -> dict:
        return {"state": self.state.value, "at": self.at.isoformat()}


class LifecycleTracker:
    """
    Holds the current state of one run and its transition history.

    Illegal transitions raise LifecycleTransitionError instead of being
    silently ignored.
    """

    def __init__(self, sample: str):
        self.sample = sample
        self.state = LifecycleState.NOT_STARTED
        self.history: list[StateChange] = [
            StateChange(LifecycleState.NOT_STARTED, datetime.now(timezone.utc))
        ]
        # Furthest state reached before a failure
        self.reached = LifecycleState.NOT_STARTED

    def transition(self, requested: LifecycleState) -> None:
        """
        Move to ``requested``.

        Raises:
            LifecycleTransitionError: If the transition is not allowed
        """
        requested = LifecycleState(requested)
        if not can_transition(self.state, requested):
            raise LifecycleTransitionError(self.state.value, requested.value)

        logger.debug("%s: %s -> %s", self.sample, self.state.value, requested.value)
        self.state = requested
        if requested in _NEXT_STATE or requested is LifecycleState.VERIFIED:
            self.reached = requested
        self.history.append(StateChange(requested, datetime.now(timezone.utc)))

    def fail(self) -> None:
        """Move to Failed (no-op if already failed)."""
        if self.state is not LifecycleState.FAILED:
            self.transition(LifecycleState.FAILED)

    @property
    def failed(self) -> bool:
        return any(change.state is LifecycleState.FAILED for change in self.history)

    @property
    def verified(self) -> bool:
        return any(change.state is LifecycleState.VERIFIED for change in self.history)

    def states(self) -> list[str]:
        return [change.state.value for change in self.history]
