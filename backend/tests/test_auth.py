"""
Authentication and profile tests.

Tests cover:
- Bearer token validation (missing, malformed, expired)
- Registration with referral codes and nicknames
- Read-only impersonation tokens
"""
import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.auth import create_access_token, create_impersonation_token
from backend.app.models.profile import Profile
from backend.tests.conftest import auth_headers, make_profile


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ============================================
# TOKENS
# ============================================

@pytest.mark.asyncio
async def test_me_without_token(client: AsyncClient):
    response = await client.get("/auth/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_with_malformed_header(client: AsyncClient, referrer: Profile):
    token = create_access_token(referrer.id, referrer.role)
    response = await client.get("/auth/me", headers={"Authorization": token})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_with_invalid_token(client: AsyncClient):
    response = await client.get("/auth/me", headers=_bearer("not-a-jwt"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_with_expired_token(client: AsyncClient, referrer: Profile):
    token = create_access_token(referrer.id, referrer.role, expires_in=timedelta(seconds=-5))
    response = await client.get("/auth/me", headers=_bearer(token))
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired"


@pytest.mark.asyncio
async def test_me_returns_profile(client: AsyncClient, referrer: Profile):
    response = await client.get("/auth/me", headers=auth_headers(referrer))
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(referrer.id)
    assert data["referral_code"] == referrer.referral_code


@pytest.mark.asyncio
async def test_stored_role_wins_over_token_claim(client: AsyncClient, referrer: Profile):
    """A token claiming admin does not open admin routes for an affiliate."""
    token = create_access_token(referrer.id, "admin")
    response = await client.get("/admin/users", headers=_bearer(token))
    assert response.status_code == 403


# ============================================
# REGISTRATION / REFERRALS
# ============================================

@pytest.mark.asyncio
async def test_register_with_referral_code(client: AsyncClient, test_session: AsyncSession, referrer: Profile):
    new_id = uuid.uuid4()
    token = create_access_token(new_id, "affiliate")
    response = await client.post(
        "/auth/register",
        json={"email": "new@example.com", "full_name": "New Affiliate", "referral_code": referrer.referral_code},
        headers=_bearer(token),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(new_id)
    assert data["role"] == "affiliate"
    assert data["referred_by"] == str(referrer.id)


@pytest.mark.asyncio
async def test_register_twice_keeps_first_referrer(
    client: AsyncClient, test_session: AsyncSession, referrer: Profile
):
    other = await make_profile(test_session)
    token = create_access_token(uuid.uuid4(), "affiliate")

    await client.post("/auth/register", json={"referral_code": referrer.referral_code}, headers=_bearer(token))
    response = await client.post("/auth/register", json={"referral_code": other.referral_code}, headers=_bearer(token))

    assert response.status_code == 200
    assert response.json()["referred_by"] == str(referrer.id)


@pytest.mark.asyncio
async def test_register_with_unknown_code(client: AsyncClient):
    token = create_access_token(uuid.uuid4(), "affiliate")
    response = await client.post("/auth/register", json={"referral_code": "nope"}, headers=_bearer(token))
    assert response.status_code == 200
    assert response.json()["referred_by"] is None


@pytest.mark.asyncio
async def test_register_by_nickname(client: AsyncClient, referrer: Profile):
    response = await client.put("/auth/me/nickname", json={"nickname": "rafa.vendas"}, headers=auth_headers(referrer))
    assert response.status_code == 200

    token = create_access_token(uuid.uuid4(), "affiliate")
    response = await client.post("/auth/register", json={"referral_code": "rafa.vendas"}, headers=_bearer(token))
    assert response.json()["referred_by"] == str(referrer.id)


@pytest.mark.asyncio
async def test_self_referral_ignored(client: AsyncClient, referrer: Profile):
    response = await client.post(
        "/auth/register",
        json={"referral_code": referrer.referral_code},
        headers=auth_headers(referrer),
    )
    assert response.status_code == 200
    assert response.json()["referred_by"] is None


@pytest.mark.asyncio
async def test_nickname_taken(client: AsyncClient, referrer: Profile, buyer: Profile):
    await client.put("/auth/me/nickname", json={"nickname": "taken"}, headers=auth_headers(referrer))
    response = await client.put("/auth/me/nickname", json={"nickname": "taken"}, headers=auth_headers(buyer))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_nickname_cannot_copy_another_referral_code(client: AsyncClient, referrer: Profile, buyer: Profile):
    response = await client.put(
        "/auth/me/nickname", json={"nickname": referrer.referral_code}, headers=auth_headers(buyer)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_referral_code_wins_over_matching_nickname(
    client: AsyncClient, test_session: AsyncSession, referrer: Profile
):
    """Rows that predate the nickname check must not make registration fail."""
    squatter = await make_profile(test_session)
    squatter.nickname = referrer.referral_code
    await test_session.commit()

    token = create_access_token(uuid.uuid4(), "affiliate")
    response = await client.post(
        "/auth/register", json={"referral_code": referrer.referral_code}, headers=_bearer(token)
    )
    assert response.status_code == 200
    assert response.json()["referred_by"] == str(referrer.id)


@pytest.mark.asyncio
async def test_network_lists_referrals(client: AsyncClient, referrer: Profile, buyer: Profile):
    response = await client.get("/auth/me/network", headers=auth_headers(referrer))
    assert response.status_code == 200
    data = response.json()
    assert [r["id"] for r in data["referrals"]] == [str(buyer.id)]
    assert data["referral_code"] == referrer.referral_code


# ============================================
# IMPERSONATION
# ============================================

@pytest.mark.asyncio
async def test_impersonation_token_is_read_only(client: AsyncClient, admin: Profile, referrer: Profile):
    response = await client.post(f"/admin/impersonate/{referrer.id}", headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["read_only"] is True
    headers = _bearer(body["token"])

    response = await client.get("/auth/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["id"] == str(referrer.id)

    response = await client.put("/auth/me/nickname", json={"nickname": "hijack"}, headers=headers)
    assert response.status_code == 403

    response = await client.post("/withdrawals", json={"pix_key": "x"}, headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_impersonating_an_admin_grants_no_admin_access(client: AsyncClient, test_session: AsyncSession, admin: Profile):
    other_admin = await make_profile(test_session, role="admin")
    headers = _bearer(create_impersonation_token(admin.id, other_admin.id))
    response = await client.get("/admin/users", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_impersonation_token_from_non_admin_refused(client: AsyncClient, referrer: Profile, buyer: Profile):
    headers = _bearer(create_impersonation_token(referrer.id, buyer.id))
    response = await client.get("/auth/me", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_impersonation_token_cannot_register(client: AsyncClient, admin: Profile):
    headers = _bearer(create_impersonation_token(admin.id, uuid.uuid4()))
    response = await client.post("/auth/register", json={}, headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_affiliate_cannot_impersonate(client: AsyncClient, referrer: Profile, buyer: Profile):
    response = await client.post(f"/admin/impersonate/{buyer.id}", headers=auth_headers(referrer))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_impersonate_unknown_user(client: AsyncClient, admin: Profile):
    response = await client.post(f"/admin/impersonate/{uuid.uuid4()}", headers=auth_headers(admin))
    assert response.status_code == 404
