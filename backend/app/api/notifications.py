import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.auth import Principal, get_current_principal, require_write_access
from backend.app.services.notifications import NotificationService, NotificationServiceError

router = APIRouter()


@router.get("")
async def list_notifications(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    return await NotificationService(session).list_for_user(principal.user_id)


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
):
    try:
        await NotificationService(session).mark_read(principal.user_id, notification_id)
        await session.commit()
    except NotificationServiceError as e:
        await session.rollback()
        handle_service_error(e)
    return {"status": "ok"}


@router.post("/read-all")
async def mark_all_read(
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
):
    count = await NotificationService(session).mark_all_read(principal.user_id)
    await session.commit()
    return {"status": "ok", "updated": count}
