"""Domain enumerations and state-transition rules."""

import enum


class RideState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ACCEPTED = "ACCEPTED"
    FROZEN = "FROZEN"
    CANCELED = "CANCELED"
    FINISHED = "FINISHED"


# State machine: maps current state -> set of valid next states
RIDE_TRANSITIONS: dict[RideState, set[RideState]] = {
    RideState.ACTIVE: {
        RideState.ACCEPTED,
        RideState.FROZEN,
        RideState.FINISHED,
        RideState.CANCELED,
    },
    RideState.ACCEPTED: {
        RideState.FROZEN,
        RideState.FINISHED,
        RideState.CANCELED,
    },
    RideState.FROZEN: {RideState.CANCELED},
    RideState.CANCELED: set(),
    RideState.FINISHED: set(),
}

# Only these states are queried by the poll loop
POLLABLE_STATES: frozenset[RideState] = frozenset(
    {RideState.ACTIVE, RideState.ACCEPTED}
)

# Rides that may be relaunched as a fresh request
RELAUNCHABLE_STATES: frozenset[RideState] = frozenset(
    {RideState.FROZEN, RideState.CANCELED}
)
