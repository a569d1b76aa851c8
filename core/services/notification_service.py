"""
Notification service.

Persists notification rows and lets each receiver read, mark and delete
their own. Every bulk operation is scoped to the calling actor, so a
receiver can never touch someone else's notifications.
"""

import logging
from uuid import UUID, uuid4

from auth.types import Actor
from core.errors import InvalidError
from core.models import Notification, NotificationCreate, NotificationPage
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for notification operations."""

    def __init__(self, store):
        self.store = store

    def notify(self, data: NotificationCreate) -> Notification:
        """
        Persist one notification.

        Args:
            data: Sender, receiver, type and text

        Returns:
            The stored notification (unread)
        """
        notification = Notification(
            id=uuid4(),
            sender_id=data.sender_id,
            receiver_id=data.receiver_id,
            type=data.type,
            title=data.title,
            message=data.message,
            read=False,
            created_at=now_utc(),
        )
        stored = self.store.insert_notification(notification)
        logger.debug(f"Notification {stored.type.value} -> {stored.receiver_id}")
        return stored

    def list_for_receiver(
        self,
        actor: Actor,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> NotificationPage:
        """
        List the actor's notifications, newest first, with counts.

        Args:
            actor: The receiver
            unread_only: Only return unread notifications
            limit: Maximum results
            offset: Rows to skip

        Returns:
            NotificationPage with the page, total and unread counts
        """
        if limit < 1 or offset < 0:
            raise InvalidError("limit must be positive and offset non-negative")

        notifications = self.store.list_notifications(
            actor.id, unread_only=unread_only, limit=limit, offset=offset
        )
        return NotificationPage(
            notifications=notifications,
            total=self.store.count_notifications(actor.id),
            unread=self.store.count_notifications(actor.id, unread_only=True),
        )

    def unread_count(self, actor: Actor) -> int:
        return self.store.count_notifications(actor.id, unread_only=True)

    def mark_read(self, actor: Actor, ids: list[UUID] | None = None) -> int:
        """
        Mark the actor's notifications read.

        Args:
            actor: The receiver
            ids: Notification IDs, or None for all of them. IDs belonging
                to other receivers are ignored.

        Returns:
            Number of notifications that changed

        Raises:
            InvalidError: If ids is an empty list
        """
        if ids is not None and not ids:
            raise InvalidError("ids must be omitted or non-empty")
        return self.store.mark_notifications_read(actor.id, ids)

    def delete(self, actor: Actor, ids: list[UUID] | None = None) -> int:
        """
        Delete the actor's notifications.

        Args:
            actor: The receiver
            ids: Notification IDs, or None for all of them. IDs belonging
                to other receivers are ignored.

        Returns:
            Number of notifications deleted

        Raises:
            InvalidError: If ids is an empty list
        """
        if ids is not None and not ids:
            raise InvalidError("ids must be omitted or non-empty")
        deleted = self.store.delete_notifications(actor.id, ids)
        logger.info(f"Deleted {deleted} notifications for {actor.id}")
        return deleted
