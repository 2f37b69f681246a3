"""
clientlane/models/activity.py
Portal activity feed entries and notification records.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from clientlane.models.base import ApiModel


class ActivityType(str, Enum):
    PORTAL_CREATED = "portal_created"
    PORTAL_UPDATED = "portal_updated"
    FILE_UPLOADED = "file_uploaded"
    FILE_DELETED = "file_deleted"
    UPDATE_CREATED = "update_created"
    UPDATE_DELETED = "update_deleted"
    REPLY_CREATED = "reply_created"
    SHARED_LINK_CREATED = "shared_link_created"


class NotificationType(str, Enum):
    NEW_COMMENT = "new_comment"
    FILE_UPLOADED = "file_uploaded"
    PORTAL_UPDATED = "portal_updated"
    NEW_UPDATE = "new_update"
    DEADLINE_REMINDER = "deadline_reminder"


class ActorSummary(ApiModel):
    id: str
    name: str
    email: str


class Activity(ApiModel):
    id: str
    portal_id: str
    user_id: str
    type: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    user: Optional[ActorSummary] = None


class NotificationPortal(ApiModel):
    id: str
    name: str


class Notification(ApiModel):
    id: str
    type: str
    message: str
    link: str
    is_read: bool
    created_at: datetime
    portal: Optional[NotificationPortal] = None
