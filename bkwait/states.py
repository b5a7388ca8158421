"""Poll loop states for a single build's lifecycle."""

from __future__ import annotations

from enum import Enum, auto


class PollState(Enum):
    AWAITING_COMMIT = auto()
    QUEUED = auto()
    SCHEDULED = auto()
    RUNNING = auto()
    PASSED = auto()
    FAILED = auto()
    OTHER = auto()


# Buildkite build state -> poll state; anything unlisted is OTHER.
BUILD_STATES: dict[str, PollState] = {
    "queued": PollState.QUEUED,
    "scheduled": PollState.SCHEDULED,
    "running": PollState.RUNNING,
    "passed": PollState.PASSED,
    "failed": PollState.FAILED,
    "failing": PollState.FAILED,
}

TERMINAL: frozenset[PollState] = frozenset({PollState.PASSED, PollState.FAILED})


def classify(build_state: str) -> PollState:
    return BUILD_STATES.get(build_state, PollState.OTHER)


def is_terminal(state: PollState) -> bool:
    return state in TERMINAL
