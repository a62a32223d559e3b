from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import Notification, NotificationType, RelatedType


def create_notification(
    db: Session,
    *,
    type: NotificationType,
    title: str,
    message: str,
    related_id: int | None = None,
    related_type: RelatedType | None = None,
) -> Notification:
    notification = Notification(
        type=type,
        title=title,
        message=message,
        read=False,
        related_id=related_id,
        related_type=related_type,
    )
    db.add(notification)
    db.flush()
    return notification


def list_notifications(db: Session, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = select(Notification).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    if unread_only:
        query = query.where(Notification.read.is_(False))
    return list(db.execute(query).scalars())


def mark_read(db: Session, *, notification_id: int) -> None:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise ValueError('Notification not found')
    notification.read = True
    db.flush()


def mark_all_read(db: Session) -> int:
    result = db.execute(update(Notification).where(Notification.read.is_(False)).values(read=True))
    db.flush()
    return result.rowcount or 0
