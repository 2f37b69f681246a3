"""
clientlane/models/portal.py
Portal models: the freelancer-owned workspace shared with one client.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from clientlane.models.base import ApiModel


class PortalStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    ARCHIVED = "archived"


class PortalClient(ApiModel):
    id: str
    name: str
    email: str


class SharedLink(ApiModel):
    id: str
    token: str
    is_revoked: bool
    expires_at: datetime
    last_viewed_at: Optional[datetime] = None
    created_at: datetime


class Portal(ApiModel):
    id: str
    name: str
    description: str = ""
    status: PortalStatus
    created_by: str
    client_id: Optional[str] = None
    client_name: str = ""
    created_at: datetime
    updated_at: datetime


class PortalDetail(Portal):
    client: Optional[PortalClient] = None
    shared_links: List[SharedLink] = []
    initials: str = "P"


def portal_initials(name: str) -> str:
    """First letter of each word, upper-cased; "P" for an empty name."""
    letters = "".join(word[0] for word in name.split() if word)
    return letters.upper() or "P"
