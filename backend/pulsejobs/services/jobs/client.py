"""
Job Service Client

Stateless operations against the remote job service: submit, poll, cancel,
list active jobs and migrate guest ownership. Every request carries the
caller's identity header from SessionIdentity, read fresh per request so an
identity switch is picked up by pollers that are already running.
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError as SchemaValidationError
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pulsejobs.core.config import settings
from pulsejobs.core.exceptions import NetworkError, OwnershipError, RemoteError, ValidationError
from pulsejobs.core.http_client import HTTPResponse, JobServiceHTTPClient
from pulsejobs.core.logging import mask_identifier
from pulsejobs.schemas.job import Job
from pulsejobs.services.jobs.session import SessionIdentity

logger = logging.getLogger(__name__)


def _stop_after_configured_attempts(retry_state) -> bool:
    return stop_after_attempt(settings.HTTP_MAX_RETRIES)(retry_state)


class JobClient:
    """HTTP operations on the job service for the current identity"""

    def __init__(self, http: JobServiceHTTPClient, session: SessionIdentity):
        self._http = http
        self._session = session

    async def _identity_headers(self) -> Dict[str, str]:
        headers = await self._session.headers()
        if not headers.get("X-Guest-Id") and not headers.get("X-User-Id"):
            raise ValidationError("Either guest_id or user_id required")
        return headers

    @staticmethod
    def _parse_job(payload: Any) -> Job:
        try:
            return Job.model_validate(payload)
        except SchemaValidationError as e:
            raise RemoteError(f"Invalid job payload from server: {e}") from e

    @staticmethod
    def _raise_for_status(response: HTTPResponse, default_message: str) -> None:
        if response.success:
            return
        message = response.error_message(default_message)
        if response.status_code in (403, 404):
            raise OwnershipError(message, response.status_code)
        raise RemoteError(message, response.status_code)

    async def submit(self, url: str, item_id: str = None) -> str:
        """
        Create a job for `url`.

        Returns:
            str: job id assigned by the service
        """

        if not url or not url.strip():
            raise ValidationError("url is required")

        headers = await self._identity_headers()
        body = {"url": url.strip(), **await self._session.job_identifier()}
        if item_id:
            body["itemId"] = item_id

        logger.info(f"Starting async processing for: {url}")

        response = await self._http.post("/jobs", json=body, headers=headers)
        if not response.success:
            message = response.error_message("Failed to start processing")
            logger.error(f"Job submission failed ({response.status_code}): {message}")
            raise RemoteError(message, response.status_code)

        data = response.content if isinstance(response.content, dict) else {}
        if not data.get("success") or not data.get("jobId"):
            raise RemoteError("Invalid response from server", response.status_code)

        logger.info(f"Job created: {data['jobId']}")
        return str(data["jobId"])

    async def poll(self, job_id: str) -> Job:
        """Fetch the current state of a job the identity owns"""

        headers = await self._identity_headers()
        response = await self._http.get(f"/jobs/{job_id}", headers=headers)
        self._raise_for_status(response, "Failed to check job status")

        data = response.content if isinstance(response.content, dict) else {}
        if not data.get("success"):
            raise RemoteError(response.error_message("Failed to check job status"), response.status_code)

        job = self._parse_job(data)
        logger.debug(f"Job {job_id} status: {job.status.value} ({job.progress}%)")
        return job

    async def cancel(self, job_id: str) -> bool:
        """Ask the service to stop a job; advisory, failures are only logged"""

        try:
            headers = await self._identity_headers()
            response = await self._http.post(f"/jobs/{job_id}/cancel", headers=headers)
        except (NetworkError, ValidationError) as e:
            logger.warning(f"Cancel request for job {job_id} failed: {e}")
            return False

        if not response.success:
            logger.warning(
                f"Cancel request for job {job_id} rejected ({response.status_code}): "
                f"{response.error_message('Unknown error')}"
            )
            return False

        logger.info(f"Cancel requested for job {job_id}")
        return True

    @retry(
        stop=_stop_after_configured_attempts,
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(NetworkError),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True
    )
    async def list_active(self) -> List[Job]:
        """All non-terminal (and recently completed) jobs owned by the identity"""

        headers = await self._identity_headers()
        response = await self._http.get("/jobs/active", headers=headers)
        self._raise_for_status(response, "Failed to fetch active jobs")

        data = response.content if isinstance(response.content, dict) else {}
        if not data.get("success"):
            raise RemoteError(response.error_message("Failed to fetch active jobs"), response.status_code)

        jobs = [self._parse_job(entry) for entry in data.get("jobs") or []]
        logger.info(f"Found {len(jobs)} active job(s)")
        return jobs

    async def migrate_guest(self, guest_id: str, user_id: str) -> Dict[str, Any]:
        """Reassign every job owned by `guest_id` to `user_id`; safe to repeat, never retried here"""

        headers = {"X-Guest-Id": guest_id}
        logger.info(f"Migrating guest {mask_identifier(guest_id)} to user {user_id}")

        response = await self._http.post(
            "/jobs/migrate-guest",
            json={"guestId": guest_id, "userId": user_id},
            headers=headers
        )
        if not response.success:
            raise RemoteError(response.error_message("Migration failed"), response.status_code)

        return response.content if isinstance(response.content, dict) else {}

    async def guest_pending_count(self, guest_id: str) -> int:
        """Number of queued/processing jobs a guest would carry into migration"""

        response = await self._http.get(f"/jobs/guest-pending/{guest_id}", headers={"X-Guest-Id": guest_id})
        if not response.success or not isinstance(response.content, dict):
            logger.warning(f"Failed to get pending jobs ({response.status_code})")
            return 0
        return int(response.content.get("pendingJobs") or 0)
