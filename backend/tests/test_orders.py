"""
API tests for order endpoints.

Tests cover:
- Order creation (pay-now with checkout preference, invoice with credit limit)
- Listing own orders
- Paying an invoice
- Admin status transitions, listing and deletion
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_payment_service
from backend.app.main import app
from backend.app.models.commission import Commission
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.services.payment import PaymentTimeoutError
from backend.tests.conftest import auth_headers, make_order, make_product, make_profile


@pytest.fixture
def payment_stub():
    """PaymentService replaced by a mock returning a preference."""
    stub = AsyncMock()
    stub.create_preference.return_value = {
        "init_point": "https://mp.example/checkout/pref-1",
        "id": "pref-1",
        "success": True,
    }
    app.dependency_overrides[get_payment_service] = lambda: stub
    yield stub
    app.dependency_overrides.pop(get_payment_service, None)


# ============================================
# CREATE ORDER
# ============================================

@pytest.mark.asyncio
async def test_create_pay_now_order_returns_init_point(
    client: AsyncClient,
    test_session: AsyncSession,
    buyer: Profile,
    product: Product,
    payment_stub,
):
    response = await client.post(
        "/orders",
        json={"product_id": str(product.id), "quantity": 2, "payment_method": "now"},
        headers={**auth_headers(buyer), "Origin": "https://shop.example"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["order"]["status"] == "pending"
    assert Decimal(str(data["order"]["amount"])) == Decimal("2000.00")
    assert data["payment"]["init_point"] == "https://mp.example/checkout/pref-1"

    kwargs = payment_stub.create_preference.call_args.kwargs
    assert kwargs["origin"] == "https://shop.example"
    assert kwargs["items"][0]["quantity"] == 2
    assert kwargs["payer"]["email"] == buyer.email

    order = (await test_session.execute(select(Order))).scalar_one()
    assert order.payment_preference_id == "pref-1"


@pytest.mark.asyncio
async def test_create_order_keeps_order_when_payment_fails(
    client: AsyncClient,
    test_session: AsyncSession,
    buyer: Profile,
    product: Product,
    payment_stub,
):
    """A provider timeout leaves the pending order in place and reports the error."""
    payment_stub.create_preference.side_effect = PaymentTimeoutError(15)
    response = await client.post(
        "/orders",
        json={"product_id": str(product.id)},
        headers=auth_headers(buyer),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["payment"]["success"] is False
    assert "did not answer" in data["payment"]["error"]
    orders = (await test_session.execute(select(Order))).scalars().all()
    assert len(orders) == 1
    assert orders[0].status == "pending"


@pytest.mark.asyncio
async def test_create_invoice_order_over_limit_refused(
    client: AsyncClient,
    test_session: AsyncSession,
    admin: Profile,
    payment_stub,
):
    debtor = await make_profile(test_session, invoice_limit="1000.00")
    item = await make_product(test_session, admin, final_price="300.00")
    await make_order(test_session, debtor, item, amount="800.00", payment_method="invoice")

    response = await client.post(
        "/orders",
        json={"product_id": str(item.id), "payment_method": "invoice"},
        headers=auth_headers(debtor),
    )
    assert response.status_code == 400
    assert "Credit limit exceeded" in response.json()["detail"]
    payment_stub.create_preference.assert_not_called()


@pytest.mark.asyncio
async def test_create_invoice_order_skips_payment(
    client: AsyncClient, buyer: Profile, product: Product, payment_stub
):
    response = await client.post(
        "/orders",
        json={"product_id": str(product.id), "payment_method": "invoice"},
        headers=auth_headers(buyer),
    )
    assert response.status_code == 200
    assert response.json()["payment"] is None
    payment_stub.create_preference.assert_not_called()


@pytest.mark.asyncio
async def test_create_order_requires_token(client: AsyncClient, product: Product):
    response = await client.post("/orders", json={"product_id": str(product.id)})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_order_rejects_bad_quantity(client: AsyncClient, buyer: Profile, product: Product):
    response = await client.post(
        "/orders",
        json={"product_id": str(product.id), "quantity": 0},
        headers=auth_headers(buyer),
    )
    assert response.status_code == 422


# ============================================
# MY ORDERS / PAY INVOICE
# ============================================

@pytest.mark.asyncio
async def test_list_my_orders(
    client: AsyncClient, test_session: AsyncSession, buyer: Profile, referrer: Profile, product: Product
):
    await make_order(test_session, buyer, product)
    await make_order(test_session, referrer, product)
    response = await client.get("/orders/mine", headers=auth_headers(buyer))
    assert response.status_code == 200
    orders = response.json()
    assert len(orders) == 1
    assert orders[0]["product_name"] == "Test Product"
    assert sorted(orders[0]["allowed_transitions"]) == ["approved", "paid", "rejected"]


@pytest.mark.asyncio
async def test_pay_invoice_endpoint(
    client: AsyncClient,
    test_session: AsyncSession,
    referrer: Profile,
    buyer: Profile,
    product: Product,
    mock_cache,
):
    order = await make_order(test_session, buyer, product, amount="1000.00", payment_method="invoice")
    response = await client.post(f"/orders/{order.id}/pay-invoice", headers=auth_headers(buyer))
    assert response.status_code == 200
    assert response.json()["new_status"] == "paid"
    assert mock_cache.invalidations == 1

    await test_session.refresh(referrer)
    assert referrer.balance == Decimal("200.00")


# ============================================
# ADMIN TRANSITIONS
# ============================================

@pytest.mark.asyncio
async def test_admin_marks_order_paid(
    client: AsyncClient,
    test_session: AsyncSession,
    admin: Profile,
    referrer: Profile,
    buyer: Profile,
    product: Product,
):
    order = await make_order(test_session, buyer, product, amount="1000.00")
    response = await client.post(
        f"/admin/orders/{order.id}/status",
        json={"status": "paid"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["old_status"] == "pending"
    assert Decimal(str(body["commission_granted"]["amount"])) == Decimal("200.00")

    await test_session.refresh(referrer)
    assert referrer.balance == Decimal("200.00")
    assert referrer.total_earnings == Decimal("200.00")


@pytest.mark.asyncio
async def test_admin_illegal_transition_conflict(
    client: AsyncClient, test_session: AsyncSession, admin: Profile, buyer: Profile, product: Product
):
    order = await make_order(test_session, buyer, product, status="delivered")
    response = await client.post(
        f"/admin/orders/{order.id}/status",
        json={"status": "approved"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_shipped_invoice_settled_only_by_buyer(
    client: AsyncClient,
    test_session: AsyncSession,
    admin: Profile,
    referrer: Profile,
    buyer: Profile,
    product: Product,
):
    order = await make_order(
        test_session, buyer, product, amount="1000.00", status="shipped", payment_method="invoice"
    )
    response = await client.post(
        f"/admin/orders/{order.id}/status",
        json={"status": "paid"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 409

    response = await client.post(f"/orders/{order.id}/pay-invoice", headers=auth_headers(buyer))
    assert response.status_code == 200
    assert response.json()["new_status"] == "paid"
    await test_session.refresh(referrer)
    assert referrer.balance == Decimal("200.00")


@pytest.mark.asyncio
async def test_admin_reject_without_reason(
    client: AsyncClient, test_session: AsyncSession, admin: Profile, buyer: Profile, product: Product
):
    order = await make_order(test_session, buyer, product)
    response = await client.post(
        f"/admin/orders/{order.id}/status",
        json={"status": "rejected"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_affiliate_cannot_transition(
    client: AsyncClient, test_session: AsyncSession, buyer: Profile, product: Product
):
    order = await make_order(test_session, buyer, product)
    response = await client.post(
        f"/admin/orders/{order.id}/status",
        json={"status": "paid"},
        headers=auth_headers(buyer),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_list_orders_filters_and_searches(
    client: AsyncClient, test_session: AsyncSession, admin: Profile, buyer: Profile, product: Product
):
    await make_order(test_session, buyer, product, status="pending")
    await make_order(test_session, buyer, product, status="paid")
    response = await client.get("/admin/orders?status=paid", headers=auth_headers(admin))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["allowed_transitions"] == ["approved", "shipped"]

    response = await client.get("/admin/orders?search=test%20product", headers=auth_headers(admin))
    assert response.json()["total"] == 2


@pytest.mark.asyncio
async def test_admin_delete_paid_order_reverses_commission(
    client: AsyncClient,
    test_session: AsyncSession,
    admin: Profile,
    referrer: Profile,
    buyer: Profile,
    product: Product,
):
    order = await make_order(test_session, buyer, product, amount="1000.00")
    await client.post(f"/admin/orders/{order.id}/status", json={"status": "paid"}, headers=auth_headers(admin))

    response = await client.delete(f"/admin/orders/{order.id}", headers=auth_headers(admin))
    assert response.status_code == 200

    await test_session.refresh(referrer)
    assert referrer.balance == Decimal("0.00")
    assert (await test_session.execute(select(Commission))).scalars().all() == []
