from datetime import datetime
from enum import Enum
from typing import Optional

from clientlane.core.database import as_utc
from clientlane.models.base import ApiModel


class Role(str, Enum):
    FREELANCER = "freelancer"
    CLIENT = "client"


class UserPublic(ApiModel):
    id: str
    email: str
    name: str
    role: Role
    email_verified: bool = False
    last_seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @staticmethod
    def from_row(row) -> "UserPublic":
        return UserPublic(
            id=row.id,
            email=row.email,
            name=row.name,
            role=Role(row.role),
            email_verified=bool(row.email_verified),
            last_seen_at=as_utc(row.last_seen_at),
            created_at=as_utc(row.created_at),
        )
