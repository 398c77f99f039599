"""
Migration Coordinator

Moves ownership of a guest's jobs to an authenticated user when the guest
signs in. The service only reassigns rows still owned by the guest, so
repeating a migration is harmless and reports zero the second time.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pulsejobs.core.exceptions import JobServiceError, ValidationError
from pulsejobs.core.logging import mask_identifier
from pulsejobs.services.jobs.client import JobClient
from pulsejobs.services.jobs.recovery import RecoveryOrchestrator
from pulsejobs.services.jobs.session import SessionIdentity

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    success: bool
    migrated_count: int = 0
    errors: List[str] = field(default_factory=list)


class MigrationCoordinator:
    """Guest to user job migration"""

    def __init__(
        self,
        client: JobClient,
        session: SessionIdentity,
        recovery: Optional[RecoveryOrchestrator] = None
    ):
        self._client = client
        self._session = session
        self._recovery = recovery

    async def migrate(self, guest_id: str, user_id: str) -> MigrationResult:
        """
        Reassign every job owned by `guest_id` to `user_id`.

        Failures are reported in the result rather than raised; the caller
        decides whether to show them. Only invalid ids raise ValidationError.
        """

        if not guest_id or not guest_id.strip():
            raise ValidationError("guest_id is required")
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")

        logger.info(f"Starting migration from guest {mask_identifier(guest_id)} to user {user_id}")

        try:
            data = await self._client.migrate_guest(guest_id, user_id)
        except JobServiceError as e:
            logger.error(f"Failed to migrate data: {e.message}")
            return MigrationResult(success=False, migrated_count=0, errors=[e.message])

        migrated = data.get("migratedCount", data.get("migratedJobs")) or 0
        logger.info(f"Migration successful: {migrated} job(s) migrated")
        return MigrationResult(success=True, migrated_count=int(migrated))

    async def authenticate(self, user_id: str, user_email: Optional[str] = None) -> Optional[MigrationResult]:
        """Switch the session to `user_id`, migrating guest jobs first.

        The switch happens whatever the migration outcome; a failed migration
        comes back in the result as a warning. Returns None when there was no
        guest session to migrate from.
        """

        current = await self._session.current()
        result = None

        if current.is_guest:
            logger.info(f"Auto-migrating guest data for: {user_email or user_id}")
            result = await self.migrate(current.guest_id, user_id)
            if not result.success:
                logger.warning(f"Guest migration failed, continuing sign-in: {'; '.join(result.errors)}")
        else:
            logger.info("No guest session found, skipping migration")

        await self._session.switch_to_authenticated(user_id, user_email)

        if self._recovery is not None:
            self._recovery.reset()

        return result

    async def pending_jobs(self, guest_id: str) -> int:
        """Number of guest jobs that a migration would carry over"""
        try:
            return await self._client.guest_pending_count(guest_id)
        except JobServiceError as e:
            logger.warning(f"Error getting pending jobs: {e.message}")
            return 0

    async def has_data_to_migrate(self, guest_id: str) -> bool:
        return await self.pending_jobs(guest_id) > 0
