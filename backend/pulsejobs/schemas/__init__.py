from .job import Job, JobStatus, PersistedJobRecord, TERMINAL_STATUSES
from .session import AuthenticatedUser, SessionIdentifier, SessionType
