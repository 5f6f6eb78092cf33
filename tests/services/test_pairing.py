"""
Tests for device pairing.
"""

from datetime import datetime, timedelta

import pytest

from tinychat.config import PairingConfig
from tinychat.services.pairing import PairingService
from tinychat.utils.exceptions import NotFoundError


@pytest.fixture
def pairing(storage) -> PairingService:
    return PairingService(storage, PairingConfig(ttl_seconds=60))


@pytest.mark.unit
@pytest.mark.asyncio
class TestPairingService:
    """Test the start/accept/finalize handshake."""

    async def test_handshake(self, pairing):
        pairing_id = await pairing.start()

        assert pairing_id.startswith("pair_")
        assert await pairing.finalize(pairing_id) is None

        await pairing.accept(pairing_id, "user-1")

        assert await pairing.finalize(pairing_id) == "user-1"

    async def test_single_use(self, pairing):
        pairing_id = await pairing.start()
        await pairing.accept(pairing_id, "user-1")
        await pairing.finalize(pairing_id)

        with pytest.raises(NotFoundError):
            await pairing.finalize(pairing_id)

    async def test_unknown(self, pairing):
        with pytest.raises(NotFoundError):
            await pairing.accept("pair_missing", "user-1")

    async def test_expired(self, pairing):
        now = datetime.now()
        pairing_id = await pairing.start(now)

        with pytest.raises(NotFoundError):
            await pairing.accept(pairing_id, "user-1", now + timedelta(seconds=61))

    async def test_purge_expired(self, pairing):
        now = datetime.now()
        old = await pairing.start(now - timedelta(minutes=5))
        fresh = await pairing.start(now)

        assert await pairing.purge_expired(now) == 1

        with pytest.raises(NotFoundError):
            await pairing.finalize(old, now)
        assert await pairing.finalize(fresh, now) is None
