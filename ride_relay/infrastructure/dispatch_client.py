"""
Remote Ride API Client
======================

Thin async wrapper around the third-party dispatch API.

* Every call carries HTTP basic auth from configuration.
* Bodies are parsed best-effort: JSON when possible, else ``{"raw": text}``.
* Non-2xx answers raise ``UpstreamError`` with the parsed body attached.
* Network failures (DNS, timeout, reset) raise ``TransportError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from ride_relay.config import Settings
from ride_relay.domain.errors import TransportError, UpstreamError
from ride_relay.domain.extraction import unwrap_stage

logger = logging.getLogger(__name__)

CREATE_PATH = "/CriarSolicitacaoViagem"
STAGE_PATH = "/EtapaSolicitacao"
STATUS_PATH = "/SolicitacaoStatus"
RECORD_PATH = "/ConsultarSolicitacao"
CANCEL_PATH = "/CancelarSolicitacao"


def parse_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


class DispatchClient:
    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        client_id: int = 0,
        service_id: int = 0,
        payment_type_id: int = 0,
        default_postcode: str = "",
        city: str = "",
        state_code: str = "",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.service_id = service_id
        self.payment_type_id = payment_type_id
        self.default_postcode = default_postcode
        self.city = city
        self.state_code = state_code
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=httpx.BasicAuth(username, password),
            timeout=httpx.Timeout(timeout, connect=5.0),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchClient":
        return cls(
            settings.dispatch_base_url,
            settings.dispatch_user,
            settings.dispatch_password,
            client_id=settings.dispatch_client_id,
            service_id=settings.dispatch_service_id,
            payment_type_id=settings.dispatch_payment_type_id,
            default_postcode=settings.dispatch_default_postcode,
            city=settings.dispatch_city,
            state_code=settings.dispatch_state_code,
            timeout=settings.dispatch_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Operations ────────────────────────────────────────────────────

    async def create(
        self,
        origin: str,
        destination: str,
        note: str = "",
        fare: Optional[float] = None,
    ) -> Any:
        payload: dict[str, Any] = {
            "ClienteID": self.client_id,
            "ServicoItemID": self.service_id,
            "TipoPagamentoID": self.payment_type_id,
            "enderecoOrigem": self._address(origin),
            "lstDestino": [self._address(destination)],
            "Observacao": (note or "").strip(),
        }
        if fare is not None:
            payload["ValorCorrida"] = fare
        return await self._request("POST", CREATE_PATH, json=payload)

    async def query_stage(self, ride_id: int) -> Any:
        data = await self._request(
            "GET", STAGE_PATH, params={"solicitacaoID": ride_id}
        )
        return unwrap_stage(data)

    async def query_status(self, ride_id: int) -> Any:
        return await self._request(
            "GET", STATUS_PATH, params={"solicitacaoID": ride_id}
        )

    async def query_record(self, ride_id: int) -> Any:
        return await self._request(
            "GET", RECORD_PATH, params={"solicitacaoID": ride_id}
        )

    async def cancel(self, ride_id: int) -> Any:
        return await self._request(
            "POST",
            CANCEL_PATH,
            params={
                "solicitacaoID": ride_id,
                "tipo": "C",
                "cancEngano": "false",
                "cliNaoEncontrado": "false",
            },
        )

    # ── Internals ─────────────────────────────────────────────────────

    def _address(self, street: str) -> dict[str, str]:
        return {
            "CEP": self.default_postcode,
            "Endereco": street.strip(),
            "Cidade": self.city,
            "EstadoSigla": self.state_code,
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Dispatch API %s %s failed: %s", method, path, exc)
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        data = parse_body(resp.text)
        if not resp.is_success:
            logger.info(
                "Dispatch API %s %s returned HTTP %d", method, path, resp.status_code
            )
            raise UpstreamError(resp.status_code, data)
        return data
