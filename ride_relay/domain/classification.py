"""
Status classification
=====================

Maps the dispatch API's free-text status to a lifecycle state by
case-insensitive substring match against a fixed Portuguese vocabulary.

The upstream wording is not documented; if it changes, these two tables are
the only place to update.
"""

from __future__ import annotations

from typing import Optional

from .enums import RideState

FINISHED_MARKERS: tuple[str, ...] = (
    "finalizada",
    "finalizado",
    "concluída",
    "concluido",
)

FROZEN_MARKERS: tuple[str, ...] = (
    "excedeu",
    "nenhum motorista",
    "sem motorista",
    "não foi possível",
    "nao foi possivel",
    "cancelada",
    "cancelado",
)


def _contains_any(text: Optional[str], markers: tuple[str, ...]) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in markers)


def is_finished(status_text: Optional[str]) -> bool:
    return _contains_any(status_text, FINISHED_MARKERS)


def is_frozen(status_text: Optional[str]) -> bool:
    return _contains_any(status_text, FROZEN_MARKERS)


def classify_status(
    status_text: Optional[str],
    driver_name: Optional[str],
    current: RideState = RideState.ACTIVE,
) -> RideState:
    """Return the state a pollable ride should be in after this status.

    Finished wins over frozen; a driver name moves an active ride to
    ``ACCEPTED``; otherwise the current state is kept.
    """
    if is_finished(status_text):
        return RideState.FINISHED
    if is_frozen(status_text):
        return RideState.FROZEN
    if driver_name:
        return RideState.ACCEPTED
    return current
