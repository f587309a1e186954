"""
Counterparty directory clients.

Resolve the shipper who owns a load. The directory is eventually
consistent with trip state, so "unknown" is an expected answer and
transport failures are reported as unknown rather than raised.
"""

import logging
from typing import Optional, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.core.config import settings
from freight_gate.app.core.reliability import CircuitBreaker, CircuitOpenError, counterparty_circuit_breaker
from freight_gate.app.models.shipment import Shipment

logger = logging.getLogger("freight_gate.counterparty")


class CounterpartyDirectory(Protocol):
    async def lookup(self, db: AsyncSession, shipment: Shipment) -> Optional[int]:
        ...


class ShipmentRecordDirectory:
    """Reads ``shipments.shipper_id``, filled in by the marketplace when known."""

    async def lookup(self, db: AsyncSession, shipment: Shipment) -> Optional[int]:
        result = await db.execute(select(Shipment.shipper_id).where(Shipment.id == shipment.id))
        return result.scalar_one_or_none()


class HttpCounterpartyDirectory:
    """
    Asks the marketplace load service: GET {base_url}/loads/{load_id}.

    A 404, a missing ``shipper_id``, any httpx error or an open circuit all
    mean "not resolvable yet".
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = None,
        breaker: CircuitBreaker = None,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.counterparty_timeout_seconds
        self.breaker = breaker or counterparty_circuit_breaker
        self.transport = transport

    async def _fetch(self, load_id: int) -> Optional[int]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(f"{self.base_url}/loads/{load_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                raise ValueError(f"unexpected directory payload for load {load_id}")
            shipper_id = body.get("shipper_id")
            return int(shipper_id) if shipper_id is not None else None

    async def lookup(self, db: AsyncSession, shipment: Shipment) -> Optional[int]:
        try:
            return await self.breaker.call(self._fetch, shipment.load_id)
        except CircuitOpenError:
            logger.info("Counterparty lookup for load %s skipped, circuit open", shipment.load_id)
        except (httpx.HTTPError, ValueError, TypeError) as exc:
            logger.warning("Counterparty lookup for load %s failed: %s", shipment.load_id, exc)
        return None


def build_directory() -> CounterpartyDirectory:
    if settings.counterparty_directory_url:
        return HttpCounterpartyDirectory(settings.counterparty_directory_url)
    return ShipmentRecordDirectory()
