"""Notifier contract and the default database-backed inbox."""

import logging
from typing import Protocol

from sqlalchemy import func, update

from claimflow.errors import NotFound
from claimflow.models.notification import Notification
from claimflow.schemas.notification import NotificationRequest
from claimflow.services.claim_store import IdLike, as_uuid

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Accepts notifications; delivery mechanics are up to the implementation."""

    def notify(self, request: NotificationRequest) -> None:
        """Deliver or record a notification."""
        ...


class DatabaseNotifier:
    """Stores notifications in the ``notifications`` table for in-app reading."""

    def __init__(self, session_factory):
        """Initialize notifier with a sessionmaker."""
        self.session_factory = session_factory

    def notify(self, request: NotificationRequest) -> None:
        """Insert a notification row."""
        db = self.session_factory()
        try:
            db.add(Notification(**request.model_dump()))
            db.commit()
            logger.debug(f"Notification {request.type} stored for user {request.user_id}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 20):
        """Most recent notifications for a user."""
        db = self.session_factory()
        try:
            query = db.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.is_read.is_(False))
            return query.order_by(Notification.created_at.desc()).limit(limit).all()
        finally:
            db.close()

    def unread_count(self, user_id: str) -> int:
        """Number of notifications the user has not read yet."""
        db = self.session_factory()
        try:
            return (
                db.query(func.count(Notification.id))
                .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
                .scalar()
            )
        finally:
            db.close()

    def mark_read(self, user_id: str, notification_id: IdLike) -> None:
        """Mark one of the user's notifications as read.

        Marking an already read notification is a no-op. A notification that
        belongs to someone else is reported as missing.
        """
        notification_uuid = as_uuid(notification_id)
        db = self.session_factory()
        try:
            result = db.execute(
                update(Notification)
                .where(Notification.id == notification_uuid, Notification.user_id == user_id)
                .values(is_read=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if result.rowcount == 0:
            raise NotFound(f"Notification {notification_id} not found")
