from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class SessionType(str, Enum):
    GUEST = "guest"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthenticatedUser:
    """User identity handed over by the sign-in flow"""
    id: str
    email: str


@dataclass(frozen=True)
class SessionIdentifier:
    """Exactly one of a guest id or an authenticated user"""
    type: SessionType
    guest_id: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None

    def __post_init__(self):
        if self.type == SessionType.GUEST:
            if not self.guest_id or self.user_id:
                raise ValueError("Guest session requires guest_id and no user_id")
        elif self.type == SessionType.AUTHENTICATED:
            if not self.user_id or self.guest_id:
                raise ValueError("Authenticated session requires user_id and no guest_id")

    @classmethod
    def guest(cls, guest_id: str) -> "SessionIdentifier":
        return cls(type=SessionType.GUEST, guest_id=guest_id)

    @classmethod
    def authenticated(cls, user_id: str, user_email: Optional[str] = None) -> "SessionIdentifier":
        return cls(type=SessionType.AUTHENTICATED, user_id=user_id, user_email=user_email)

    @property
    def is_guest(self) -> bool:
        return self.type == SessionType.GUEST

    @property
    def is_authenticated(self) -> bool:
        return self.type == SessionType.AUTHENTICATED

    def headers(self) -> Dict[str, str]:
        """Identity headers for the job service; never both"""
        if self.is_guest:
            return {"X-Guest-Id": self.guest_id}
        return {"X-User-Id": self.user_id}

    def job_identifier(self) -> Dict[str, str]:
        """Identifier attached to job bodies"""
        if self.is_guest:
            return {"guestId": self.guest_id}
        return {"userId": self.user_id}
