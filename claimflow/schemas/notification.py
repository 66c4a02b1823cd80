"""Notification request schema."""

from typing import Optional

from pydantic import BaseModel


class NotificationRequest(BaseModel):
    """Structured notification handed to a notifier."""

    user_id: str
    type: str
    title: str
    message: str
    related_id: Optional[str] = None
