from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.auth import Principal, get_current_principal
from backend.app.services.invoices import InvoiceServiceError, finance_summary

router = APIRouter()


@router.get("/summary")
async def get_finance_summary(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    """Invoice debt, credit limit and open invoice orders with due dates."""
    try:
        return await finance_summary(session, principal.user_id)
    except InvoiceServiceError as e:
        handle_service_error(e)
