"""Machine identity registry - long-lived per-device tokens for anonymous traffic."""

import logging
import uuid
from dataclasses import dataclass

from .ports import EphemeralStore

logger = logging.getLogger(__name__)

MACHINE_ID_TTL_SECONDS = 365 * 24 * 60 * 60


def machine_key(machine_id: str) -> str:
    return f"x-machine-id:{machine_id}"


@dataclass
class MachineIdentityRegistry:
    store: EphemeralStore
    ttl_seconds: int = MACHINE_ID_TTL_SECONDS

    async def is_known(self, machine_id: str) -> bool:
        return await self.store.exists(machine_key(machine_id))

    async def ensure(self, existing_id: str | None = None) -> str:
        """
        Return existing_id when the store recognizes it, otherwise mint one.

        The stored value is a sentinel; presence of the key is the only
        proof that the device is known.
        """
        if existing_id and await self.is_known(existing_id):
            logger.info("Existing machine ID validated", extra={"machine_id": existing_id})
            return existing_id

        machine_id = str(uuid.uuid4())
        await self.store.set_with_ttl(machine_key(machine_id), "1", self.ttl_seconds)
        logger.info("New machine ID created", extra={"machine_id": machine_id})
        return machine_id
