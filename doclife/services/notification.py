"""
Document Lifecycle Platform
Notification Service.

Central service for creating and querying in-app notifications.
The alert engine and the workflow service create them; users read
them through the notifications blueprint.
"""

from datetime import datetime, timezone

from sqlalchemy import func, select, update

from doclife.core.exceptions import NotFoundError
from doclife.models import db
from doclife.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", category="system", severity="info",
               link=None, alert_id=None, document_id=None, alert_level=None,
               days_until_expiration=None, escalated_from_id=None, commit=True):
        """
        Create a single notification record.

        Args:
            commit: when False the row is only flushed, so the caller can
                    commit it together with the event that raised it.

        Returns:
            The created Notification instance.
        """
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            link=link,
            alert_id=alert_id,
            document_id=document_id,
            alert_level=alert_level,
            days_until_expiration=days_until_expiration,
            escalated_from_id=escalated_from_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve a user's notifications, newest first.

        Returns:
            (items, total) where total ignores limit/offset.
        """
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        total = db.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = db.session.execute(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False),
            )
        ).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read.

        Another user's notification is reported as not found.
        """
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of a user's notifications as read. Returns the count changed."""
        now = datetime.now(timezone.utc)
        result = db.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=now)
            .execution_options(synchronize_session="fetch")
        )
        db.session.commit()
        return result.rowcount
