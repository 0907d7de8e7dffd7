# backend/app/services/notifications.py
"""In-app notifications for buyers and affiliates."""
import uuid
from typing import Optional, Dict, Any, Tuple, List

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ServiceError
from backend.app.models.notification import Notification


class NotificationServiceError(ServiceError):
    """Base exception for notification errors."""


class NotificationNotFoundError(NotificationServiceError):
    def __init__(self, notification_id: uuid.UUID):
        super().__init__(f"Notification {notification_id} not found", 404)


def order_status_message(
    new_status: str,
    product_name: Optional[str],
    rejection_reason: Optional[str] = None,
) -> Optional[Tuple[str, str, str]]:
    """
    (title, message, type) sent to the buyer when their order changes status.
    Returns None for statuses the buyer is not told about.
    """
    name = product_name or "your product"
    if new_status in ("approved", "paid"):
        return ("Order approved", f'Your order for "{name}" was approved.', "success")
    if new_status == "rejected":
        return ("Order rejected", f'Your order for "{name}" was rejected. Reason: {rejection_reason}', "error")
    if new_status == "shipped":
        return ("Order shipped", f'Your order for "{name}" was shipped.', "success")
    if new_status == "delivered":
        return ("Order delivered", f'Your order for "{name}" was delivered.', "success")
    return None


def add_notification(
    session: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: str = "info",
) -> Notification:
    """Stage a notification in the caller's transaction."""
    notification = Notification(user_id=user_id, title=title, message=message, type=type)
    session.add(notification)
    return notification


class NotificationService:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_user(self, user_id: uuid.UUID, limit: int = 50) -> Dict[str, Any]:
        result = await self.session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        items: List[Notification] = list(result.scalars().all())
        unread = await self.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read == False,  # noqa: E712
            )
        )
        return {
            "unread_count": unread.scalar_one(),
            "items": [
                {
                    "id": str(n.id),
                    "title": n.title,
                    "message": n.message,
                    "type": n.type,
                    "is_read": n.is_read,
                    "created_at": n.created_at.isoformat() if n.created_at else None,
                }
                for n in items
            ],
        }

    async def mark_read(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFoundError(notification_id)
        notification.is_read = True

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_one(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFoundError(notification_id)
        await self.session.delete(notification)
        await self.session.flush()

    async def delete_for_user(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(Notification)
            .where(Notification.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
