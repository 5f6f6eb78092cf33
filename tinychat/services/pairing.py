"""
Device pairing.

A new device starts a pairing and shows its ID; a signed-in device accepts
it, binding it to its user; the new device then finalizes and takes on that
identity. Pairings are single use and expire.
"""

from datetime import datetime, timedelta

from tinychat.config import PairingConfig
from tinychat.core.storage.base import ChatStorage
from tinychat.utils.exceptions import NotFoundError
from tinychat.utils.id_generator import generate_pairing_id
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


class PairingService:
    """Short-lived pairing entries kept in storage."""

    def __init__(self, storage: ChatStorage, config: PairingConfig | None = None):
        self.storage = storage
        self.config = config or PairingConfig()

    async def start(self, now: datetime | None = None) -> str:
        """Open a pairing and return its ID."""
        now = now or datetime.now()
        pairing_id = generate_pairing_id()
        await self.storage.add_pairing(
            pairing_id, now + timedelta(seconds=self.config.ttl_seconds)
        )
        logger.info(f"Pairing {pairing_id} started")
        return pairing_id

    async def accept(self, pairing_id: str, user_id: str, now: datetime | None = None) -> None:
        """
        Bind a pairing to the accepting user.

        Raises:
            NotFoundError: Unknown or expired pairing
        """
        async with self.storage.transaction():
            await self._require_live(pairing_id, now)
            await self.storage.set_pairing_user(pairing_id, user_id)
        logger.info(f"Pairing {pairing_id} accepted", extra={"user_id": user_id})

    async def finalize(self, pairing_id: str, now: datetime | None = None) -> str | None:
        """
        Collect the identity of an accepted pairing.

        Returns:
            The accepting user's ID (the pairing is consumed), or None if
            nobody accepted yet

        Raises:
            NotFoundError: Unknown or expired pairing
        """
        async with self.storage.transaction():
            user_id = await self._require_live(pairing_id, now)
            if user_id is None:
                return None
            await self.storage.delete_pairing(pairing_id)

        logger.info(f"Pairing {pairing_id} finalized", extra={"user_id": user_id})
        return user_id

    async def purge_expired(self, now: datetime | None = None) -> int:
        removed = await self.storage.delete_expired_pairings(now or datetime.now())
        if removed:
            logger.debug(f"Purged {removed} expired pairings")
        return removed

    async def _require_live(self, pairing_id: str, now: datetime | None) -> str | None:
        entry = await self.storage.get_pairing(pairing_id)
        if entry is None:
            raise NotFoundError(f"Pairing not found: {pairing_id}", {"pairing_id": pairing_id})

        user_id, expires_at = entry
        if expires_at <= (now or datetime.now()):
            raise NotFoundError(f"Pairing expired: {pairing_id}", {"pairing_id": pairing_id})
        return user_id
