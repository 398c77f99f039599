"""
Session identity for job ownership

Resolves whether the current actor is a device-scoped guest or an
authenticated user, and produces the identifier attached to every job
request. The guest id is a UUID generated once per install and kept in
durable storage.
"""

import json
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from pulsejobs.core.config import settings
from pulsejobs.core.logging import mask_identifier
from pulsejobs.core.storage import DurableStore
from pulsejobs.schemas.job import now_ms
from pulsejobs.schemas.session import AuthenticatedUser, SessionIdentifier

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "pulse_device_id"
DEVICE_INFO_KEY = "pulse_device_info"

UserProvider = Callable[[], Optional[AuthenticatedUser]]


class DeviceIdService:
    """Generates and keeps the persistent device identifier used by guests"""

    def __init__(self, store: DurableStore, platform: Optional[str] = None):
        self._store = store
        self._platform = platform or settings.DEVICE_PLATFORM
        self._device_id: Optional[str] = None

    async def get_or_create_device_id(self) -> str:
        if self._device_id:
            return self._device_id

        existing = self._store.get(DEVICE_ID_KEY)
        if existing:
            logger.info(f"Found existing device ID: {mask_identifier(existing)}")
            self._device_id = existing
            await self.update_last_active()
            return existing

        new_id = str(uuid.uuid4())
        logger.info(f"Generated new device ID: {mask_identifier(new_id)}")
        self._store.set(DEVICE_ID_KEY, new_id)
        self._device_id = new_id

        timestamp = now_ms()
        device_info = {
            "deviceId": new_id,
            "platform": self._platform,
            "createdAt": timestamp,
            "lastActive": timestamp,
        }
        self._store.set(DEVICE_INFO_KEY, json.dumps(device_info))
        return new_id

    async def update_last_active(self) -> None:
        if not self._device_id:
            return

        info = await self.get_device_info()
        if info is None:
            return
        info["lastActive"] = now_ms()
        self._store.set(DEVICE_INFO_KEY, json.dumps(info))

    async def get_device_info(self) -> Optional[Dict[str, Any]]:
        raw = self._store.get(DEVICE_INFO_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable device info")
            return None

    async def clear(self) -> None:
        self._store.delete(DEVICE_ID_KEY)
        self._store.delete(DEVICE_INFO_KEY)
        self._device_id = None
        logger.info("Device ID cleared")

    @property
    def cached_device_id(self) -> Optional[str]:
        return self._device_id


class SessionIdentity:
    """Tracks the active session identifier.

    `user_provider` is the hook into the sign-in flow: it returns the signed-in
    user, or None for a guest. Switching identity at runtime goes through
    `switch_to_authenticated` / `switch_to_guest`; guest to user transitions
    should be routed through MigrationCoordinator.authenticate so guest-owned
    jobs are reassigned before the switch.
    """

    def __init__(self, device_ids: DeviceIdService, user_provider: Optional[UserProvider] = None):
        self._device_ids = device_ids
        self._user_provider = user_provider
        self._current: Optional[SessionIdentifier] = None

    async def initialize(self) -> SessionIdentifier:
        """Resolve the session; call once on start"""
        user = self._user_provider() if self._user_provider else None

        if user is not None:
            logger.info(f"User is authenticated: {user.email}")
            self._current = SessionIdentifier.authenticated(user.id, user.email)
            return self._current

        guest_id = await self._device_ids.get_or_create_device_id()
        logger.info(f"Using guest mode: {mask_identifier(guest_id)}")
        self._current = SessionIdentifier.guest(guest_id)
        return self._current

    async def current(self) -> SessionIdentifier:
        if self._current is not None:
            return self._current
        return await self.initialize()

    def cached(self) -> Optional[SessionIdentifier]:
        return self._current

    async def headers(self) -> Dict[str, str]:
        session = await self.current()
        return session.headers()

    async def job_identifier(self) -> Dict[str, str]:
        session = await self.current()
        return session.job_identifier()

    async def switch_to_authenticated(self, user_id: str, user_email: Optional[str] = None) -> SessionIdentifier:
        previous = self._current
        logger.info(f"Switching to authenticated mode: {user_email or user_id}")
        self._current = SessionIdentifier.authenticated(user_id, user_email)

        if previous is not None and previous.is_guest:
            logger.info(f"Left guest session {mask_identifier(previous.guest_id)}")

        return self._current

    async def switch_to_guest(self) -> SessionIdentifier:
        logger.info("Switching to guest mode")
        guest_id = await self._device_ids.get_or_create_device_id()
        self._current = SessionIdentifier.guest(guest_id)
        return self._current

    @property
    def is_authenticated(self) -> bool:
        return self._current is not None and self._current.is_authenticated

    @property
    def is_guest(self) -> bool:
        return self._current is not None and self._current.is_guest

    @property
    def guest_id(self) -> Optional[str]:
        if self.is_guest:
            return self._current.guest_id
        return None

    @property
    def user_id(self) -> Optional[str]:
        if self.is_authenticated:
            return self._current.user_id
        return None
