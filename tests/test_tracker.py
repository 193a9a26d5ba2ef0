"""Tests for the ride tracker: transitions, notifications, cancel, relaunch."""

from __future__ import annotations

import asyncio

import pytest

from ride_relay.domain.entities import InvalidStateTransition
from ride_relay.domain.enums import RideState
from ride_relay.domain.errors import (
    NotFoundExtraction,
    RideNotTracked,
    TransportError,
    UpstreamError,
    ValidationError,
)
from ride_relay.workers.tracker import RideTracker

ACCEPTED_STAGE = {
    "NomePrestador": "João",
    "Veiculo": "Onix",
    "Placa": "ABC1234",
    "StatusSolicitacao": "Motorista a caminho",
}


# ── Create ────────────────────────────────────────────────────────────


class TestCreate:
    @pytest.mark.asyncio
    async def test_created_ride_is_active_and_not_notified(self, tracker, dispatch, store):
        ride, result = await tracker.create("Rua A, 10", "Rua B, 20")

        assert ride.id == 101
        assert ride.state == RideState.ACTIVE
        assert ride.notified_acceptance is False
        assert result == {"Resultado": {"resultado": {"SolicitacaoID": 101}}}
        assert tracker.is_tracked(101)
        assert tracker.is_polling(101)
        assert store.records[101].origin == "Rua A, 10"
        dispatch.create.assert_awaited_once_with("Rua A, 10", "Rua B, 20", "", None)

    @pytest.mark.asyncio
    async def test_inputs_are_trimmed_and_fare_forwarded(self, tracker, dispatch):
        ride, _ = await tracker.create("  Rua A, 10 ", " Rua B, 20", " portão 2 ", 35.0)

        dispatch.create.assert_awaited_once_with("Rua A, 10", "Rua B, 20", "portão 2", 35.0)
        assert ride.declared_fare == 35.0
        assert ride.note == "portão 2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("origin,destination", [("", "Rua B"), ("Rua A", "   ")])
    async def test_blank_address_rejected_before_network(self, tracker, dispatch, origin, destination):
        with pytest.raises(ValidationError):
            await tracker.create(origin, destination)
        dispatch.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_id_surfaces_payload(self, tracker, dispatch):
        dispatch.create.return_value = {"Resultado": {"mensagem": "ok"}}

        with pytest.raises(NotFoundExtraction) as exc_info:
            await tracker.create("Rua A", "Rua B")

        assert exc_info.value.payload == {"Resultado": {"mensagem": "ok"}}
        assert tracker.rides() == []

    @pytest.mark.asyncio
    async def test_unstorable_id_surfaces_payload(self, tracker, dispatch):
        dispatch.create.return_value = {"SolicitacaoID": 10**400}

        with pytest.raises(NotFoundExtraction):
            await tracker.create("Rua A", "Rua B")
        assert tracker.rides() == []

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, tracker, dispatch):
        dispatch.create.side_effect = UpstreamError(422, {"raw": "endereço inválido"})

        with pytest.raises(UpstreamError) as exc_info:
            await tracker.create("Rua A", "Rua B")

        assert exc_info.value.status_code == 422
        assert tracker.rides() == []

    @pytest.mark.asyncio
    async def test_first_tick_fires_immediately(self, tracker, dispatch, wait_until):
        await tracker.create("Rua A", "Rua B")

        assert await wait_until(lambda: dispatch.query_stage.await_count == 1)
        dispatch.query_stage.assert_awaited_with(101)


# ── Tick / classification ─────────────────────────────────────────────


class TestTick:
    @pytest.mark.asyncio
    async def test_driver_assignment_moves_to_accepted(self, tracker, dispatch, notifier, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = ACCEPTED_STAGE

        assert await tracker.tick(101) is True

        ride = tracker.get(101)
        assert ride.state == RideState.ACCEPTED
        assert ride.driver_name == "João"
        assert ride.vehicle_description == "Onix"
        assert ride.plate == "ABC1234"
        assert ride.last_status_text == "Motorista a caminho"
        assert ride.notified_acceptance is True
        assert notifier.alerts == [101]
        assert len(notifier.messages) == 1
        assert notifier.messages[0].data == {
            "id": 101,
            "driver": "João",
            "vehicle": "Onix",
            "plate": "ABC1234",
            "origin": "Rua A, 10",
            "destination": "Rua B, 20",
        }

    @pytest.mark.asyncio
    async def test_acceptance_notified_once_across_ticks(self, tracker, dispatch, notifier, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = ACCEPTED_STAGE

        for _ in range(4):
            await tracker.tick(101)

        assert len(notifier.messages) == 1
        assert notifier.alerts == [101]

    @pytest.mark.asyncio
    async def test_failed_push_still_sets_flag(self, tracker, dispatch, notifier, make_ride):
        notifier.fail = True
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = ACCEPTED_STAGE

        assert await tracker.tick(101) is True
        assert await tracker.tick(101) is True

        ride = tracker.get(101)
        assert ride.state == RideState.ACCEPTED
        assert ride.notified_acceptance is True
        assert len(notifier.messages) == 1

    @pytest.mark.asyncio
    async def test_no_driver_stays_active(self, tracker, dispatch, notifier, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Procurando motorista"}

        assert await tracker.tick(101) is True
        assert tracker.get(101).state == RideState.ACTIVE
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_driver_fields_are_monotonic(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = ACCEPTED_STAGE
        await tracker.tick(101)

        dispatch.query_stage.return_value = {
            "NomePrestador": "",
            "StatusSolicitacao": "Em viagem",
        }
        await tracker.tick(101)

        ride = tracker.get(101)
        assert ride.driver_name == "João"
        assert ride.plate == "ABC1234"
        assert ride.last_status_text == "Em viagem"

    @pytest.mark.asyncio
    async def test_status_falls_back_to_status_endpoint(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = {"Etapa": "Busca"}
        dispatch.query_status.return_value = {"StatusSolicitacaoDesc": "Aguardando aceite"}

        await tracker.tick(101)

        ride = tracker.get(101)
        assert ride.last_status_text == "Aguardando aceite"
        assert ride.stage_label == "Busca"

    @pytest.mark.asyncio
    async def test_status_keeps_previous_text_when_absent(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(last_status_text="Pedido criado"), poll=False)
        dispatch.query_stage.return_value = {}
        dispatch.query_status.side_effect = UpstreamError(404, {"raw": ""})

        assert await tracker.tick(101) is True
        assert tracker.get(101).last_status_text == "Pedido criado"

    @pytest.mark.asyncio
    async def test_finished_ride_leaves_active_set(self, tracker, dispatch, store, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Viagem FINALIZADA"}
        dispatch.query_record.return_value = {"Solicitacao": {"ValorFinal": "25,50"}}

        assert await tracker.tick(101) is False

        assert not tracker.is_tracked(101)
        dispatch.query_record.assert_awaited_once_with(101)
        assert store.records[101].state == RideState.FINISHED
        assert store.records[101].final_fare == 25.5

    @pytest.mark.asyncio
    async def test_final_fare_failure_does_not_block_finish(self, tracker, dispatch, store, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Concluída"}
        dispatch.query_record.side_effect = TransportError("timeout")

        assert await tracker.tick(101) is False
        assert not tracker.is_tracked(101)
        assert store.records[101].final_fare is None

    @pytest.mark.asyncio
    async def test_frozen_ride_stops_polling_but_stays_visible(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Excedeu o tempo"}

        assert await tracker.tick(101) is False
        assert tracker.get(101).state == RideState.FROZEN
        assert tracker.get(101).is_relaunchable

        calls = dispatch.query_stage.await_count
        assert await tracker.tick(101) is False
        assert dispatch.query_stage.await_count == calls

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.side_effect = TransportError("connection reset")

        assert await tracker.tick(101) is True
        ride = tracker.get(101)
        assert ride.state == RideState.ACTIVE
        assert ride.last_error

        dispatch.query_stage.side_effect = None
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Procurando"}
        await tracker.tick(101)
        assert tracker.get(101).last_error == ""

    @pytest.mark.asyncio
    async def test_late_response_discarded_after_cancel(self, tracker, dispatch, notifier, make_ride):
        await tracker.track(make_ride(), poll=False)

        async def stage_arrives_after_cancel(ride_id):
            await tracker.cancel(ride_id)
            return ACCEPTED_STAGE

        dispatch.query_stage.side_effect = stage_arrives_after_cancel

        assert await tracker.tick(101) is False

        ride = tracker.get(101)
        assert ride.state == RideState.CANCELED
        assert ride.driver_name == ""
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_untracked_ride_makes_no_call(self, tracker, dispatch):
        assert await tracker.tick(999) is False
        dispatch.query_stage.assert_not_awaited()


# ── Cancel ────────────────────────────────────────────────────────────


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_active_ride_stops_polling(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride())
        assert tracker.is_polling(101)

        result = await tracker.cancel(101)

        assert result == {"Sucesso": True}
        assert tracker.get(101).state == RideState.CANCELED
        assert not tracker.is_polling(101)
        dispatch.cancel.assert_awaited_once_with(101)

    @pytest.mark.asyncio
    async def test_cancel_frozen_ride(self, tracker, make_ride):
        await tracker.track(make_ride(state=RideState.FROZEN))

        await tracker.cancel(101)

        assert tracker.get(101).state == RideState.CANCELED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [RideState.FINISHED, RideState.CANCELED])
    async def test_cancel_terminal_ride_fails(self, tracker, dispatch, make_ride, state):
        await tracker.track(make_ride(state=state))

        with pytest.raises(InvalidStateTransition):
            await tracker.cancel(101)
        dispatch.cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_cancel_keeps_state_and_polling(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride())
        dispatch.cancel.side_effect = UpstreamError(500, {"Mensagem": "erro"})

        with pytest.raises(UpstreamError):
            await tracker.cancel(101)

        assert tracker.get(101).state == RideState.ACTIVE
        assert tracker.is_polling(101)

    @pytest.mark.asyncio
    async def test_cancel_untracked_ride_is_relayed(self, tracker, dispatch):
        assert await tracker.cancel(555) == {"Sucesso": True}
        dispatch.cancel.assert_awaited_once_with(555)
        assert not tracker.is_tracked(555)

    @pytest.mark.asyncio
    async def test_cancel_after_finishing_fails(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(), poll=False)
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Viagem Finalizada"}
        assert await tracker.tick(101) is False
        assert not tracker.is_tracked(101)

        with pytest.raises(InvalidStateTransition):
            await tracker.cancel(101)
        dispatch.cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_ride_finished_before_restart_fails(self, tracker, dispatch, store, make_ride):
        store.records[101] = make_ride(state=RideState.FINISHED, final_fare=30.0)

        with pytest.raises(InvalidStateTransition):
            await tracker.cancel(101)
        dispatch.cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_finished_ids_are_bounded(self, dispatch, notifier, store, make_ride):
        tracker = RideTracker(dispatch, notifier, store, max_rides=1)
        dispatch.query_stage.return_value = {"StatusSolicitacao": "Concluída"}
        for ride_id in (1, 2):
            await tracker.track(make_ride(ride_id), poll=False, persist=False)
            await tracker.tick(ride_id)

        store.records.clear()

        # Only the newest finished id is remembered in memory
        assert await tracker.cancel(1) == {"Sucesso": True}
        with pytest.raises(InvalidStateTransition):
            await tracker.cancel(2)
        await tracker.shutdown()


# ── Relaunch / remove / restore ───────────────────────────────────────


class TestRelaunch:
    @pytest.mark.asyncio
    async def test_relaunch_frozen_ride_links_both_ways(self, tracker, dispatch, make_ride):
        await tracker.track(
            make_ride(state=RideState.FROZEN, note="portão 2", declared_fare=40.0)
        )
        dispatch.create.return_value = {"SolicitacaoID": 202}

        new = await tracker.relaunch(101)

        assert new.id == 202
        assert new.state == RideState.ACTIVE
        assert new.relaunched_from == 101
        assert tracker.get(101).relaunched_to == 202
        assert tracker.get(101).state == RideState.FROZEN
        assert tracker.is_polling(202)
        assert not tracker.is_polling(101)
        dispatch.create.assert_awaited_once_with("Rua A, 10", "Rua B, 20", "portão 2", 40.0)

    @pytest.mark.asyncio
    async def test_relaunch_canceled_ride(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(state=RideState.CANCELED))
        dispatch.create.return_value = {"solicitacao_id": "303"}

        new = await tracker.relaunch(101)

        assert new.id == 303

    @pytest.mark.asyncio
    async def test_relaunch_active_ride_fails(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(), poll=False)

        with pytest.raises(InvalidStateTransition):
            await tracker.relaunch(101)
        dispatch.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_relaunch_only_once(self, tracker, dispatch, make_ride):
        await tracker.track(make_ride(state=RideState.FROZEN))
        dispatch.create.return_value = {"SolicitacaoID": 202}
        await tracker.relaunch(101)

        with pytest.raises(InvalidStateTransition, match="already relaunched"):
            await tracker.relaunch(101)

    @pytest.mark.asyncio
    async def test_relaunch_unknown_ride(self, tracker):
        with pytest.raises(RideNotTracked):
            await tracker.relaunch(404)


class TestRemoveAndRestore:
    @pytest.mark.asyncio
    async def test_remove_stops_polling_and_deletes(self, tracker, store, make_ride):
        await tracker.track(make_ride())

        await tracker.remove(101)

        assert not tracker.is_tracked(101)
        assert not tracker.is_polling(101)
        assert store.deleted == [101]

    @pytest.mark.asyncio
    async def test_remove_unknown_ride(self, tracker):
        with pytest.raises(RideNotTracked):
            await tracker.remove(1)

    @pytest.mark.asyncio
    async def test_restore_resumes_only_pollable_rides(self, tracker, store, make_ride):
        store.records = {
            1: make_ride(1),
            2: make_ride(2, state=RideState.FROZEN),
            3: make_ride(3, state=RideState.ACCEPTED, driver_name="Ana"),
        }

        assert await tracker.restore() == 3

        assert tracker.is_polling(1)
        assert not tracker.is_polling(2)
        assert tracker.is_polling(3)

    @pytest.mark.asyncio
    async def test_rides_are_listed_newest_first(self, tracker, make_ride):
        from datetime import datetime, timedelta, timezone

        now = datetime.now(timezone.utc)
        await tracker.track(make_ride(1, created_at=now - timedelta(minutes=5)), poll=False)
        await tracker.track(make_ride(2, created_at=now), poll=False)

        assert [r.id for r in tracker.rides()] == [2, 1]


# ── End-to-end through the real poll loop ─────────────────────────────


@pytest.mark.asyncio
async def test_ride_lifecycle_end_to_end(dispatch, notifier, store, wait_until):
    tracker = RideTracker(dispatch, notifier, store, poll_interval_seconds=0)
    dispatch.query_stage.side_effect = [
        ACCEPTED_STAGE,
        {**ACCEPTED_STAGE, "StatusSolicitacao": "Viagem Finalizada"},
    ]
    dispatch.query_record.return_value = {"ValorFinal": 30}

    try:
        ride, _ = await tracker.create("Rua A, 10", "Rua B, 20")
        assert ride.id == 101
        assert ride.state == RideState.ACTIVE

        assert await wait_until(
            lambda: not tracker.is_tracked(101) and not tracker.is_polling(101)
        )
    finally:
        await tracker.shutdown()

    assert len(notifier.messages) == 1
    assert store.records[101].state == RideState.FINISHED
    assert store.records[101].notified_acceptance is True
    assert store.records[101].final_fare == 30.0
    dispatch.query_record.assert_awaited_once_with(101)
    assert not tracker.is_polling(101)


@pytest.mark.asyncio
async def test_shutdown_covers_final_fare_fetch(dispatch, notifier, store, make_ride, wait_until):
    tracker = RideTracker(dispatch, notifier, store, poll_interval_seconds=3600)
    fetching = asyncio.Event()

    async def slow_record(ride_id):
        fetching.set()
        await asyncio.Event().wait()

    dispatch.query_stage.return_value = {"StatusSolicitacao": "Viagem Finalizada"}
    dispatch.query_record.side_effect = slow_record

    await tracker.track(make_ride())
    assert await wait_until(fetching.is_set)

    # The loop is inside the final-fare fetch and still owns its handle
    assert not tracker.is_tracked(101)
    assert tracker.is_polling(101)

    await tracker.shutdown()

    assert not tracker.is_polling(101)
    assert store.records[101].state == RideState.ACTIVE
