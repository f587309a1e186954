"""
Shipment locking service.

Serializes checkpoint read-modify-write cycles per shipment. Inside one
process an asyncio.Lock per shipment makes the second of two concurrent
callers observe the first caller's committed state. Across workers the
conditional version UPDATE in ``commit_transition`` is the guard: the loser
gets zero rows back and must re-read.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from freight_gate.app.models.shipment import Shipment


class StaleShipmentError(Exception):
    """Another writer bumped the shipment version first."""


class ShipmentLockRegistry:

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, shipment_id: int):
        """
        Exclusive section for one shipment.

        Different shipments never contend. The lock entry is dropped once no
        caller holds or waits on it.
        """
        lock = self._locks.setdefault(shipment_id, asyncio.Lock())
        self._holders[shipment_id] = self._holders.get(shipment_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[shipment_id] -= 1
            if not self._holders[shipment_id]:
                del self._holders[shipment_id]
                self._locks.pop(shipment_id, None)

    def is_locked(self, shipment_id: int) -> bool:
        lock = self._locks.get(shipment_id)
        return lock is not None and lock.locked()


async def commit_transition(db: AsyncSession, shipment: Shipment, values: dict) -> None:
    """
    Write checkpoint columns only if nobody else moved the shipment.

    Args:
        db: Database session (caller commits)
        shipment: Shipment as read at the start of the cycle
        values: Column values to set

    Raises:
        StaleShipmentError: version changed since ``shipment`` was read
    """
    expected_version = shipment.version
    result = await db.execute(
        update(Shipment)
        .where(Shipment.id == shipment.id, Shipment.version == expected_version)
        .values(version=expected_version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleShipmentError(f"Shipment {shipment.id} changed since version {expected_version}")
    await db.refresh(shipment)


# Process-wide registry
shipment_locks = ShipmentLockRegistry()
