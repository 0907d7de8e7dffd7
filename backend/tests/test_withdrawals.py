"""
Withdrawal lifecycle and wallet tests.

Tests cover:
- Minimum withdrawal and full-balance hold
- Open invoice debt reducing the available balance
- Admin approve / reject (refund onto the current balance)
- Finance summary with due dates
"""
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.ledger import LedgerEntry
from backend.app.models.profile import Profile
from backend.app.models.withdrawal import Withdrawal
from backend.tests.conftest import (
    auth_headers,
    make_order,
    make_product,
    make_profile,
    make_withdrawal,
)


# ============================================
# SERVICE
# ============================================

@pytest.mark.asyncio
async def test_withdrawal_below_minimum_refused(test_session: AsyncSession):
    from backend.app.services.withdrawals import WithdrawalService, InsufficientBalanceError
    affiliate = await make_profile(test_session, balance="99.99")
    with pytest.raises(InsufficientBalanceError) as exc:
        await WithdrawalService(test_session).request(affiliate.id, "pix-key")
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_withdrawal_of_exact_minimum_consumes_balance(test_session: AsyncSession):
    from backend.app.services.withdrawals import WithdrawalService
    affiliate = await make_profile(test_session, balance="100.00")

    withdrawal = await WithdrawalService(test_session).request(affiliate.id, "pix-key")
    await test_session.commit()

    assert withdrawal.amount == Decimal("100.00")
    assert withdrawal.status == "pending"
    await test_session.refresh(affiliate)
    assert affiliate.balance == Decimal("0.00")

    hold = (await test_session.execute(select(LedgerEntry))).scalar_one()
    assert hold.kind == "withdrawal_hold"
    assert hold.amount == Decimal("-100.00")
    assert hold.withdrawal_id == withdrawal.id


@pytest.mark.asyncio
async def test_withdrawal_takes_entire_available_balance(test_session: AsyncSession, admin: Profile):
    """Open invoice debt stays on the balance; the rest is withdrawn."""
    from backend.app.services.withdrawals import WithdrawalService
    affiliate = await make_profile(test_session, balance="500.00")
    item = await make_product(test_session, admin)
    await make_order(test_session, affiliate, item, amount="150.00", payment_method="invoice")

    withdrawal = await WithdrawalService(test_session).request(affiliate.id, "pix-key")
    await test_session.commit()

    assert withdrawal.amount == Decimal("350.00")
    await test_session.refresh(affiliate)
    assert affiliate.balance == Decimal("150.00")


@pytest.mark.asyncio
async def test_withdrawal_requires_pix_key(test_session: AsyncSession):
    from backend.app.services.withdrawals import WithdrawalService, PixKeyRequiredError
    affiliate = await make_profile(test_session, balance="500.00")
    with pytest.raises(PixKeyRequiredError):
        await WithdrawalService(test_session).request(affiliate.id, "  ")


@pytest.mark.asyncio
async def test_reject_refunds_onto_current_balance(test_session: AsyncSession):
    """Withdrawal of 50 rejected while the balance is 10 -> 60."""
    from backend.app.services.withdrawals import WithdrawalService
    affiliate = await make_profile(test_session, balance="10.00")
    withdrawal = await make_withdrawal(test_session, affiliate, "50.00")

    await WithdrawalService(test_session).reject(withdrawal.id)
    await test_session.commit()

    await test_session.refresh(affiliate)
    assert affiliate.balance == Decimal("60.00")
    await test_session.refresh(withdrawal)
    assert withdrawal.status == "rejected"
    assert withdrawal.resolved_at is not None


@pytest.mark.asyncio
async def test_approve_leaves_balance_unchanged(test_session: AsyncSession):
    from backend.app.services.withdrawals import WithdrawalService
    affiliate = await make_profile(test_session, balance="10.00")
    withdrawal = await make_withdrawal(test_session, affiliate, "50.00")

    await WithdrawalService(test_session).approve(withdrawal.id)
    await test_session.commit()

    await test_session.refresh(affiliate)
    assert affiliate.balance == Decimal("10.00")


@pytest.mark.asyncio
async def test_resolved_withdrawal_cannot_be_refunded_twice(test_session: AsyncSession):
    from backend.app.services.withdrawals import WithdrawalService, InvalidWithdrawalStatusError
    affiliate = await make_profile(test_session, balance="10.00")
    withdrawal = await make_withdrawal(test_session, affiliate, "50.00")
    service = WithdrawalService(test_session)
    await service.reject(withdrawal.id)
    await test_session.commit()

    with pytest.raises(InvalidWithdrawalStatusError) as exc:
        await service.reject(withdrawal.id)
    assert exc.value.status_code == 409
    with pytest.raises(InvalidWithdrawalStatusError):
        await service.approve(withdrawal.id)


# ============================================
# API
# ============================================

@pytest.mark.asyncio
async def test_request_withdrawal_endpoint(client: AsyncClient, test_session: AsyncSession):
    affiliate = await make_profile(test_session, balance="250.00")
    response = await client.post(
        "/withdrawals",
        json={"pix_key": "affiliate@pix"},
        headers=auth_headers(affiliate),
    )
    assert response.status_code == 200
    assert Decimal(str(response.json()["amount"])) == Decimal("250.00")

    response = await client.get("/withdrawals/mine", headers=auth_headers(affiliate))
    assert len(response.json()) == 1


@pytest.mark.asyncio
async def test_request_withdrawal_below_minimum_endpoint(client: AsyncClient, test_session: AsyncSession):
    affiliate = await make_profile(test_session, balance="99.99")
    response = await client.post(
        "/withdrawals",
        json={"pix_key": "affiliate@pix"},
        headers=auth_headers(affiliate),
    )
    assert response.status_code == 400
    assert (await test_session.execute(select(Withdrawal))).scalars().all() == []


@pytest.mark.asyncio
async def test_admin_rejects_withdrawal(client: AsyncClient, test_session: AsyncSession, admin: Profile):
    affiliate = await make_profile(test_session, balance="10.00")
    withdrawal = await make_withdrawal(test_session, affiliate, "50.00")

    response = await client.post(f"/admin/withdrawals/{withdrawal.id}/reject", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"

    await test_session.refresh(affiliate)
    assert affiliate.balance == Decimal("60.00")

    response = await client.post(f"/admin/withdrawals/{withdrawal.id}/reject", headers=auth_headers(admin))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_admin_lists_withdrawals_by_status(client: AsyncClient, test_session: AsyncSession, admin: Profile):
    affiliate = await make_profile(test_session)
    await make_withdrawal(test_session, affiliate, "120.00")
    await make_withdrawal(test_session, affiliate, "130.00", status="approved")

    response = await client.get("/admin/withdrawals?status=pending", headers=auth_headers(admin))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["user_email"] == affiliate.email


# ============================================
# FINANCE SUMMARY
# ============================================

@pytest.mark.asyncio
async def test_finance_summary(client: AsyncClient, test_session: AsyncSession, admin: Profile):
    debtor = await make_profile(test_session, invoice_limit="1000.00", invoice_due_day=31)
    item = await make_product(test_session, admin)
    await make_order(test_session, debtor, item, amount="300.00", payment_method="invoice", status="shipped")
    await make_order(test_session, debtor, item, amount="200.00", payment_method="invoice", status="paid")

    response = await client.get("/finance/summary", headers=auth_headers(debtor))
    assert response.status_code == 200
    data = response.json()
    assert Decimal(str(data["total_debt"])) == Decimal("300.00")
    assert Decimal(str(data["available_limit"])) == Decimal("700.00")
    assert data["invoice_due_day"] == 31
    assert len(data["open_orders"]) == 1
    assert data["open_orders"][0]["due_date"] is not None
