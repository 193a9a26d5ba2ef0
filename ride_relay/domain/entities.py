"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (ACTIVE -> ACCEPTED -> FINISHED | FROZEN, CANCELED from any open state).
- Driver fields are monotonic: once the API reports a driver, later empty
  answers never clear it.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import POLLABLE_STATES, RELAUNCHABLE_STATES, RIDE_TRANSITIONS, RideState


class InvalidStateTransition(Exception):
    """Raised when a ride state change violates the state machine."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ride:
    id: int
    origin: str
    destination: str
    note: str = ""
    declared_fare: Optional[float] = None
    created_at: datetime = field(default_factory=_utcnow)
    state: RideState = RideState.ACTIVE

    driver_name: str = ""
    vehicle_description: str = ""
    plate: str = ""
    stage_label: str = ""
    last_status_text: str = ""
    last_error: str = ""
    final_fare: Optional[float] = None

    notified_acceptance: bool = False
    alerted: bool = False
    relaunched_from: Optional[int] = None
    relaunched_to: Optional[int] = None

    @property
    def is_pollable(self) -> bool:
        return self.state in POLLABLE_STATES

    @property
    def is_relaunchable(self) -> bool:
        return self.state in RELAUNCHABLE_STATES and self.relaunched_to is None

    def can_transition_to(self, new_state: RideState) -> bool:
        return new_state in RIDE_TRANSITIONS.get(self.state, set())

    def transition_to(self, new_state: RideState) -> None:
        """Move to *new_state* if the transition is legal, else raise."""
        if not self.can_transition_to(new_state):
            raise InvalidStateTransition(
                f"Cannot transition ride #{self.id} from {self.state.value} "
                f"to {new_state.value}"
            )
        self.state = new_state

    def apply_stage(
        self,
        driver_name: Optional[str] = None,
        vehicle_description: Optional[str] = None,
        plate: Optional[str] = None,
        stage_label: Optional[str] = None,
    ) -> bool:
        """Merge non-empty stage fields; returns True if anything changed."""
        changed = False
        for attr, value in (
            ("driver_name", driver_name),
            ("vehicle_description", vehicle_description),
            ("plate", plate),
            ("stage_label", stage_label),
        ):
            if value and value != getattr(self, attr):
                setattr(self, attr, value)
                changed = True
        return changed

    def set_status_text(self, text: Optional[str]) -> bool:
        if not text or text == self.last_status_text:
            return False
        self.last_status_text = text
        return True

    def mark_notified(self) -> None:
        self.notified_acceptance = True

    def snapshot(self) -> "Ride":
        """Detached copy handed to sinks and API responses."""
        return dataclasses.replace(self)
