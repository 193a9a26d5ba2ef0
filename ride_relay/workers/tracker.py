"""
Ride Tracker
============

Owns every in-flight ride (``id -> Ride``) and runs one poll task per ride,
every ``poll_interval_seconds`` (default 16 s), first tick immediately.

Tick, in order
--------------
1. Skip rides that left the pollable states (``FROZEN``, ``CANCELED``,
   ``FINISHED``) -- no network call, the task ends.
2. Query the stage (plus the status endpoint when the stage carries no
   status text).  Upstream / transport errors only annotate ``last_error``;
   the ride keeps its state and is retried on the next tick.
3. Re-check the ride is still tracked and pollable.  A cancel or removal may
   have happened while the query was in flight; such late answers are
   discarded.
4. Merge driver / vehicle / plate and status text, classify:

   * finished vocabulary -> ``FINISHED``: stop, drop from the active set,
     fetch the final fare.
   * frozen vocabulary -> ``FROZEN``: stop, keep visible for relaunch.
   * driver present -> ``ACCEPTED``; on that edge ring the bell once and
     push exactly one notification.

5. Persist when an observable field changed.

Concurrency
-----------
Single event loop, no locks.  Each ride's poll task is the only writer of
its polled fields; cancel / relaunch / remove re-check state after every
await before mutating.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ride_relay.domain.classification import classify_status
from ride_relay.domain.entities import InvalidStateTransition, Ride
from ride_relay.domain.enums import RideState
from ride_relay.domain.errors import (
    NotFoundExtraction,
    RideNotTracked,
    TransportError,
    UpstreamError,
    ValidationError,
)
from ride_relay.domain.extraction import find_fare, find_ride_id, resolve_field
from ride_relay.domain.notifications import NotificationSink, acceptance_message
from ride_relay.domain.store import RideStore
from ride_relay.infrastructure.dispatch_client import DispatchClient

logger = logging.getLogger(__name__)

CREATED_STATUS_TEXT = "Request created"
CANCELED_STATUS_TEXT = "Canceled"
TICK_ERROR_TEXT = "Update failed"


class RideTracker:
    def __init__(
        self,
        client: DispatchClient,
        notifier: NotificationSink,
        store: RideStore,
        *,
        poll_interval_seconds: float = 16.0,
        max_rides: int = 120,
    ):
        self.client = client
        self.notifier = notifier
        self.store = store
        self.poll_interval_seconds = poll_interval_seconds
        self.max_rides = max_rides
        self._rides: dict[int, Ride] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._relaunching: set[int] = set()
        # Finished ids leave ``_rides``; kept (insertion-ordered, bounded) so a
        # later cancel is still refused.
        self._finished: dict[int, None] = {}

    # ── Read-only views ───────────────────────────────────────────────

    def rides(self) -> list[Ride]:
        """Snapshots of every tracked ride, newest first."""
        return sorted(
            (r.snapshot() for r in self._rides.values()),
            key=lambda r: r.created_at,
            reverse=True,
        )

    def get(self, ride_id: int) -> Ride:
        ride = self._rides.get(ride_id)
        if ride is None:
            raise RideNotTracked(ride_id)
        return ride.snapshot()

    def is_tracked(self, ride_id: int) -> bool:
        return ride_id in self._rides

    def is_polling(self, ride_id: int) -> bool:
        task = self._tasks.get(ride_id)
        return task is not None and not task.done()

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def restore(self) -> int:
        """Reload persisted open rides and resume polling the pollable ones."""
        rides = await self.store.load_open(self.max_rides)
        for ride in rides:
            await self.track(ride, persist=False)
        if rides:
            logger.info("Restored %d tracked rides", len(rides))
        return len(rides)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Ride tracker stopped (%d poll tasks cancelled)", len(tasks))

    # ── Operations ────────────────────────────────────────────────────

    async def create(
        self,
        origin: str,
        destination: str,
        note: str = "",
        fare: Optional[float] = None,
    ) -> tuple[Ride, Any]:
        """Create the ride upstream and start tracking it."""
        origin = (origin or "").strip()
        destination = (destination or "").strip()
        note = (note or "").strip()
        if not origin or not destination:
            raise ValidationError("Origin and destination are required.")
        if fare is not None and fare <= 0:
            raise ValidationError("Fare must be a positive amount.")

        result = await self.client.create(origin, destination, note, fare)

        ride_id = find_ride_id(result)
        if ride_id is None:
            raise NotFoundExtraction(
                "Ride was created but its id could not be found in the response.",
                result,
            )

        ride = Ride(
            id=ride_id,
            origin=origin,
            destination=destination,
            note=note,
            declared_fare=fare,
            last_status_text=CREATED_STATUS_TEXT,
        )
        tracked = await self.track(ride)
        logger.info("Created ride #%d (%s -> %s)", ride_id, origin, destination)
        return tracked.snapshot(), result

    async def track(self, ride: Ride, *, poll: bool = True, persist: bool = True) -> Ride:
        """Register *ride*; pollable rides start polling immediately."""
        existing = self._rides.get(ride.id)
        if existing is not None:
            logger.warning("Ride #%d is already tracked", ride.id)
            return existing

        self._rides[ride.id] = ride
        if persist:
            await self._persist(ride)
        if poll and ride.is_pollable:
            self._start_polling(ride.id)
        return ride

    async def cancel(self, ride_id: int) -> Any:
        """Cancel upstream; a tracked ride is forced to ``CANCELED``."""
        ride = self._rides.get(ride_id)
        if ride is None and await self._is_finished(ride_id):
            raise InvalidStateTransition(
                f"Ride #{ride_id} is {RideState.FINISHED.value} and cannot be canceled"
            )
        if ride is not None and not ride.can_transition_to(RideState.CANCELED):
            raise InvalidStateTransition(
                f"Ride #{ride_id} is {ride.state.value} and cannot be canceled"
            )

        # Errors propagate; the ride and its poll loop stay untouched.
        result = await self.client.cancel(ride_id)

        ride = self._rides.get(ride_id)
        if ride is not None and ride.can_transition_to(RideState.CANCELED):
            self._stop_polling(ride_id)
            ride.transition_to(RideState.CANCELED)
            ride.last_status_text = CANCELED_STATUS_TEXT
            ride.last_error = ""
            await self._persist(ride)
            logger.info("Ride #%d canceled", ride_id)
        return result

    async def relaunch(self, ride_id: int) -> Ride:
        """Create a fresh ride with the same addresses as a frozen/canceled one."""
        old = self._rides.get(ride_id)
        if old is None:
            raise RideNotTracked(ride_id)
        if not old.is_relaunchable:
            if old.relaunched_to is not None:
                reason = f"was already relaunched as #{old.relaunched_to}"
            else:
                reason = f"is {old.state.value}"
            raise InvalidStateTransition(f"Ride #{ride_id} {reason}")
        if ride_id in self._relaunching:
            raise InvalidStateTransition(f"Ride #{ride_id} is already being relaunched")

        self._relaunching.add(ride_id)
        try:
            new_ride, _ = await self.create(
                old.origin, old.destination, old.note, old.declared_fare
            )
        finally:
            self._relaunching.discard(ride_id)

        tracked_new = self._rides.get(new_ride.id)
        if tracked_new is not None:
            tracked_new.relaunched_from = ride_id
            await self._persist(tracked_new)
        if self._rides.get(ride_id) is old:
            old.relaunched_to = new_ride.id
            await self._persist(old)

        logger.info("Ride #%d relaunched as #%d", ride_id, new_ride.id)
        return self.get(new_ride.id)

    async def remove(self, ride_id: int) -> None:
        if ride_id not in self._rides:
            raise RideNotTracked(ride_id)
        self._stop_polling(ride_id)
        del self._rides[ride_id]
        await self.store.delete(ride_id)
        logger.info("Ride #%d removed", ride_id)

    # ── Polling ───────────────────────────────────────────────────────

    async def tick(self, ride_id: int) -> bool:
        """Run one poll step.  Returns True while the ride should keep polling."""
        ride = self._rides.get(ride_id)
        if ride is None or not ride.is_pollable:
            return False

        try:
            stage, status_info = await self._fetch_stage(ride_id)
        except (UpstreamError, TransportError) as exc:
            if not self._still_pollable(ride_id, ride):
                return False
            logger.warning("Stage query for ride #%d failed: %s", ride_id, exc)
            if ride.last_error != TICK_ERROR_TEXT:
                ride.last_error = TICK_ERROR_TEXT
                await self._persist(ride)
            return True

        if not self._still_pollable(ride_id, ride):
            logger.debug("Discarding late stage answer for ride #%d", ride_id)
            return False

        changed = ride.apply_stage(
            driver_name=resolve_field(stage, "driver"),
            vehicle_description=resolve_field(stage, "vehicle"),
            plate=resolve_field(stage, "plate"),
            stage_label=resolve_field(stage, "stage"),
        )
        status_text = resolve_field(stage, "status") or resolve_field(
            status_info, "status_description"
        )
        changed = ride.set_status_text(status_text) or changed
        if ride.last_error:
            ride.last_error = ""
            changed = True

        new_state = classify_status(ride.last_status_text, ride.driver_name, ride.state)

        if new_state is RideState.FINISHED:
            await self._finish(ride)
            return False

        if new_state is RideState.FROZEN:
            ride.transition_to(RideState.FROZEN)
            self._stop_polling(ride_id)
            await self._persist(ride)
            logger.info("Ride #%d frozen: %s", ride_id, ride.last_status_text)
            return False

        if new_state is RideState.ACCEPTED and ride.state is RideState.ACTIVE:
            ride.transition_to(RideState.ACCEPTED)
            await self._announce_acceptance(ride)
            changed = True

        if changed:
            await self._persist(ride)
        return True

    async def _fetch_stage(self, ride_id: int) -> tuple[Any, Any]:
        stage = await self.client.query_stage(ride_id)
        status_info = None
        if not resolve_field(stage, "status"):
            try:
                status_info = await self.client.query_status(ride_id)
            except (UpstreamError, TransportError) as exc:
                logger.debug("Optional status query for ride #%d failed: %s", ride_id, exc)
        return stage, status_info

    def _still_pollable(self, ride_id: int, ride: Ride) -> bool:
        return self._rides.get(ride_id) is ride and ride.is_pollable

    async def _announce_acceptance(self, ride: Ride) -> None:
        if not ride.alerted:
            ride.alerted = True
            try:
                self.notifier.alert(ride)
            except Exception:
                logger.warning("Audible alert for ride #%d failed", ride.id, exc_info=True)

        if ride.notified_acceptance:
            return
        try:
            await self.notifier.broadcast(acceptance_message(ride))
        except Exception:
            logger.warning("Acceptance push for ride #%d failed", ride.id, exc_info=True)
        finally:
            # At most once, even when delivery failed.
            ride.mark_notified()

    async def _finish(self, ride: Ride) -> None:
        ride.transition_to(RideState.FINISHED)
        self._stop_polling(ride.id)
        self._rides.pop(ride.id, None)
        self._remember_finished(ride.id)
        logger.info("Ride #%d finished", ride.id)

        try:
            record = await self.client.query_record(ride.id)
        except (UpstreamError, TransportError) as exc:
            logger.warning("Final fare lookup for ride #%d failed: %s", ride.id, exc)
        else:
            ride.final_fare = find_fare(record)
            if ride.final_fare is None:
                logger.info("No final fare in record for ride #%d", ride.id)
            else:
                logger.info("Ride #%d final fare: %.2f", ride.id, ride.final_fare)
        await self._persist(ride)

    def _start_polling(self, ride_id: int) -> None:
        if self.is_polling(ride_id):
            return
        self._tasks[ride_id] = asyncio.create_task(
            self._poll_loop(ride_id), name=f"ride-poll-{ride_id}"
        )

    def _stop_polling(self, ride_id: int) -> None:
        task = self._tasks.get(ride_id)
        if task is None or task is asyncio.current_task():
            # A loop stopping itself keeps its handle until it exits, so
            # shutdown() still waits for the final-fare fetch.
            return
        del self._tasks[ride_id]
        if not task.done():
            task.cancel()

    def _remember_finished(self, ride_id: int) -> None:
        self._finished[ride_id] = None
        while len(self._finished) > self.max_rides:
            del self._finished[next(iter(self._finished))]

    async def _is_finished(self, ride_id: int) -> bool:
        if ride_id in self._finished:
            return True
        try:
            record = await self.store.get(ride_id)
        except Exception:
            logger.exception("Could not look up ride #%d", ride_id)
            return False
        return record is not None and record.state is RideState.FINISHED

    async def _poll_loop(self, ride_id: int) -> None:
        """Tick immediately, then every interval, until the ride stops polling."""
        try:
            while True:
                try:
                    keep_polling = await self.tick(ride_id)
                except Exception:
                    logger.exception("Unhandled error polling ride #%d", ride_id)
                    keep_polling = self.is_tracked(ride_id)
                if not keep_polling:
                    break
                await asyncio.sleep(self.poll_interval_seconds)
        finally:
            if self._tasks.get(ride_id) is asyncio.current_task():
                del self._tasks[ride_id]

    async def _persist(self, ride: Ride) -> None:
        try:
            await self.store.save(ride.snapshot())
        except Exception:
            logger.exception("Could not persist ride #%d", ride.id)
