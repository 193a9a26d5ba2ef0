"""
Deep Field Extractor
====================

The dispatch API wraps its answers in envelopes whose shape and key casing
vary between endpoints (``SolicitacaoID`` at the top level, nested under
``Resultado.resultado``, spelled ``solicitacao_id`` ...).  All of that
guessing lives here, driven by two declarative tables:

* ``ID_ALIASES`` / ``FARE_ALIASES`` -- lower-cased key names matched
  case-insensitively anywhere in the tree (``find_deep``).
* ``FIELD_ALIASES`` -- ordered exact-key aliases per logical field, tried
  against a single mapping (``resolve_field``).

Search order is depth-first: sequence order, then key declaration order.
A visited set keyed by ``id()`` guarantees termination on cyclic input.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from typing import Any, Optional, TypeVar

T = TypeVar("T")

ID_ALIASES: frozenset[str] = frozenset(
    {"solicitacaoid", "solicitacao_id", "idsolicitacao"}
)

FARE_ALIASES: frozenset[str] = frozenset(
    {"valorfinal", "valortotal", "valorcorrida", "valor"}
)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "status": ("StatusSolicitacao", "statusSolicitacao"),
    "status_description": ("StatusSolicitacaoDesc", "statusSolicitacaoDesc"),
    "driver": ("NomePrestador", "nomePrestador"),
    "vehicle": ("Veiculo", "veiculo"),
    "plate": ("Placa", "placa"),
    "stage": ("Etapa", "etapa"),
}

STAGE_ENVELOPES: tuple[str, ...] = ("EtapaSolicitacao", "etapaSolicitacao")

# Ride ids are stored in a signed 64-bit column
MAX_RIDE_ID = 2**63 - 1


# ── Value parsers ─────────────────────────────────────────────────────


# Decimal digits, optionally with a zero fraction ("42", "42.0", "42,00")
_INTEGRAL_TEXT = re.compile(r"([0-9]+)(?:[.,]0+)?")


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip().replace(",", "."))
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def parse_positive_int(value: Any) -> Optional[int]:
    """``42``, ``"42"`` and ``42.0`` -> 42; anything else -> None.

    Integers and digit strings are taken exactly, never through ``float``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        number = int(value)
    elif isinstance(value, str):
        match = _INTEGRAL_TEXT.fullmatch(value.strip())
        if match is None:
            return None
        try:
            number = int(match.group(1))
        except ValueError:
            # beyond the interpreter's integer string-length limit
            return None
    else:
        return None
    return number if number > 0 else None


def parse_amount(value: Any) -> Optional[float]:
    """Non-negative currency amount, accepting a decimal comma."""
    number = _as_number(value)
    if number is None or number < 0:
        return None
    return round(number, 2)


# ── Deep search ───────────────────────────────────────────────────────


def find_deep(
    tree: Any, aliases: frozenset[str], parse: Callable[[Any], Optional[T]]
) -> Optional[T]:
    """Return the first value under a key in *aliases* that *parse* accepts."""
    seen: set[int] = set()

    def walk(node: Any) -> Optional[T]:
        if not isinstance(node, (Mapping, list, tuple)):
            return None
        if id(node) in seen:
            return None
        seen.add(id(node))

        if isinstance(node, Mapping):
            for key, value in node.items():
                if isinstance(key, str) and key.lower() in aliases:
                    found = parse(value)
                    if found is not None:
                        return found
                found = walk(value)
                if found is not None:
                    return found
            return None

        for item in node:
            found = walk(item)
            if found is not None:
                return found
        return None

    return walk(tree)


def _parse_ride_id(value: Any) -> Optional[int]:
    number = parse_positive_int(value)
    return number if number is not None and number <= MAX_RIDE_ID else None


def find_ride_id(tree: Any) -> Optional[int]:
    return find_deep(tree, ID_ALIASES, _parse_ride_id)


def find_fare(tree: Any) -> Optional[float]:
    return find_deep(tree, FARE_ALIASES, parse_amount)


# ── Exact-alias resolution ────────────────────────────────────────────


def resolve_field(obj: Any, name: str) -> Optional[str]:
    """Try each alias of logical field *name*; first non-empty string wins."""
    if not isinstance(obj, Mapping):
        return None
    for key in FIELD_ALIASES[name]:
        value = obj.get(key)
        if value is None or isinstance(value, (Mapping, list, tuple)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def unwrap_stage(payload: Any) -> Any:
    """Strip the ``EtapaSolicitacao`` envelope when the API sends one."""
    if isinstance(payload, Mapping):
        for key in STAGE_ENVELOPES:
            if payload.get(key) is not None:
                return payload[key]
    return payload
