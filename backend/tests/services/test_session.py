"""
Tests for device ids and session identity.
"""

import json
import uuid

import pytest

from pulsejobs.schemas.session import AuthenticatedUser, SessionIdentifier, SessionType
from pulsejobs.services.jobs.session import DEVICE_ID_KEY, DEVICE_INFO_KEY, DeviceIdService, SessionIdentity
from tests.fake_job_service import USER_ID


@pytest.mark.unit
class TestSessionIdentifier:

    def test_guest_headers_and_identifier(self):
        session = SessionIdentifier.guest("guest-1")

        assert session.type == SessionType.GUEST
        assert session.headers() == {"X-Guest-Id": "guest-1"}
        assert session.job_identifier() == {"guestId": "guest-1"}

    def test_authenticated_headers_and_identifier(self):
        session = SessionIdentifier.authenticated(USER_ID, "user@example.com")

        assert session.headers() == {"X-User-Id": USER_ID}
        assert session.job_identifier() == {"userId": USER_ID}

    @pytest.mark.parametrize("kwargs", [
        {"type": SessionType.GUEST},
        {"type": SessionType.GUEST, "guest_id": "g", "user_id": "u"},
        {"type": SessionType.AUTHENTICATED},
        {"type": SessionType.AUTHENTICATED, "guest_id": "g", "user_id": "u"},
    ])
    def test_exactly_one_identity(self, kwargs):
        with pytest.raises(ValueError):
            SessionIdentifier(**kwargs)


@pytest.mark.unit
class TestDeviceIdService:

    @pytest.mark.asyncio
    async def test_generates_and_persists_uuid(self, store):
        service = DeviceIdService(store, platform="test")

        device_id = await service.get_or_create_device_id()

        assert str(uuid.UUID(device_id)) == device_id
        assert store.get(DEVICE_ID_KEY) == device_id
        info = json.loads(store.get(DEVICE_INFO_KEY))
        assert info["deviceId"] == device_id
        assert info["platform"] == "test"

    @pytest.mark.asyncio
    async def test_device_id_is_stable_across_instances(self, store):
        first = await DeviceIdService(store).get_or_create_device_id()
        second = await DeviceIdService(store).get_or_create_device_id()

        assert first == second

    @pytest.mark.asyncio
    async def test_clear_forgets_device(self, store):
        service = DeviceIdService(store)
        first = await service.get_or_create_device_id()

        await service.clear()

        assert service.cached_device_id is None
        assert await service.get_or_create_device_id() != first


@pytest.mark.unit
class TestSessionIdentity:

    @pytest.mark.asyncio
    async def test_guest_when_nobody_is_signed_in(self, store):
        identity = SessionIdentity(DeviceIdService(store))

        session = await identity.initialize()

        assert session.is_guest
        assert identity.guest_id == store.get(DEVICE_ID_KEY)
        assert identity.user_id is None

    @pytest.mark.asyncio
    async def test_signed_in_user_wins(self, store):
        identity = SessionIdentity(
            DeviceIdService(store),
            user_provider=lambda: AuthenticatedUser(id=USER_ID, email="user@example.com")
        )

        session = await identity.initialize()

        assert session.is_authenticated
        assert await identity.headers() == {"X-User-Id": USER_ID}
        assert DEVICE_ID_KEY not in store

    @pytest.mark.asyncio
    async def test_current_initializes_lazily(self, store):
        identity = SessionIdentity(DeviceIdService(store))

        assert identity.cached() is None
        session = await identity.current()

        assert identity.cached() is session

    @pytest.mark.asyncio
    async def test_switching_identity(self, session):
        guest_id = session.guest_id

        await session.switch_to_authenticated(USER_ID, "user@example.com")
        assert session.is_authenticated
        assert await session.job_identifier() == {"userId": USER_ID}

        await session.switch_to_guest()
        assert session.is_guest
        assert session.guest_id == guest_id
