"""
clientlane/models/file.py
File metadata, portal updates (posts) and their replies.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from clientlane.models.activity import ActorSummary
from clientlane.models.base import ApiModel


class PortalFile(ApiModel):
    id: str
    portal_id: str
    update_id: Optional[str] = None
    file_name: str
    file_url: str
    file_type: str = ""
    file_size: int
    uploaded_at: datetime
    user: Optional[ActorSummary] = None


class PortalUpdate(ApiModel):
    id: str
    portal_id: str
    title: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    user: Optional[ActorSummary] = None


class UpdateReply(ApiModel):
    """A comment on an update. Stored as an untitled update with a parent."""
    id: str
    update_id: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    user: Optional[ActorSummary] = None
    files: List[PortalFile] = Field(default_factory=list)
