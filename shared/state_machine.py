from enum import Enum
from dataclasses import dataclass


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"


TERMINAL_STATES = (JobState.COMPLETED, JobState.COMPLETED_WITH_ERRORS)


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: JobState
    to_state: JobState
    action: str


class JobStateMachine:
    """
    Lifecycle of a single scoring job.

    A job is never retried, so both completion states are terminal.
    """
    TRANSITIONS = [
        Transition(JobState.QUEUED, JobState.RUNNING, "start"),
        Transition(JobState.RUNNING, JobState.COMPLETED, "complete"),
        Transition(JobState.RUNNING, JobState.COMPLETED_WITH_ERRORS, "complete_with_errors"),
    ]

    def __init__(self, initial_state: JobState = JobState.QUEUED):
        self._state = initial_state

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(self, action: str) -> JobState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )
