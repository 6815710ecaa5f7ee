import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_signup_success(client: AsyncClient):
    """Successful signup returns 201 and correct user data (no password in response)"""
    payload = {
        "email": "newreader@example.com",
        "username": "newreader",
        "role": "user",
        "password": "strongpass123",
    }
    response = await client.post("/profile/signup", json=payload)

    assert response.status_code == 201
    data = response.json()
    assert data["email"] == payload["email"]
    assert data["username"] == "newreader"
    assert "id" in data
    assert "password" not in data
    assert data["role"] == "user"


@pytest.mark.asyncio
async def test_signup_duplicate_email(client: AsyncClient):
    """Duplicate email returns 409 Conflict"""
    payload = {
        "email": "duplicate@example.com",
        "role": "user",
        "password": "pass12345678",
    }
    await client.post("/profile/signup", json=payload)
    response = await client.post("/profile/signup", json=payload)

    assert response.status_code == 409
    assert response.json()["detail"] == "User already exists"


@pytest.mark.asyncio
async def test_signup_invalid_data(client: AsyncClient):
    """Invalid payload returns 422 Unprocessable Entity"""
    payload = {"email": "not-an-email", "password": "short"}
    response = await client.post("/profile/signup", json=payload)

    assert response.status_code == 422
    assert "detail" in response.json()


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient):
    """Login returns 200 with access_token"""
    payload = {
        "email": "loginuser@example.com",
        "password": "validpass123",
        "role": "user",
    }
    await client.post("/profile/signup", json=payload)

    login_payload = {"email": payload["email"], "password": payload["password"]}
    response = await client.post("/profile/login", json=login_payload)

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert isinstance(data["access_token"], str)
    assert len(data["access_token"]) > 20


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, test_user):
    response = await client.post(
        "/profile/login", json={"email": test_user.email, "password": "wrongpass123"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_me(client: AsyncClient, auth_headers_user, test_user):
    response = await client.get("/profile/me", headers=auth_headers_user)
    assert response.status_code == 200
    assert response.json()["id"] == test_user.id


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.get(
        "/profile/me", headers={"Authorization": "Bearer not-a-real-token"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_delete_user_as_admin(client: AsyncClient, auth_headers_admin):
    """Admin can delete another user"""
    user_payload = {
        "email": "todelete@example.com",
        "password": "pass12345678",
        "role": "user",
    }
    signup_resp = await client.post("/profile/signup", json=user_payload)
    user_id = signup_resp.json()["id"]

    delete_response = await client.delete(
        f"/profile/{user_id}", headers=auth_headers_admin
    )
    assert delete_response.status_code == 200

    get_response = await client.get(f"/profile/{user_id}", headers=auth_headers_admin)
    assert get_response.status_code == 404


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(client: AsyncClient, auth_headers_admin, test_admin):
    response = await client.delete(f"/profile/{test_admin.id}", headers=auth_headers_admin)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_user_as_non_admin_fails(client: AsyncClient, auth_headers_user):
    """Normal user cannot delete another user"""
    payload = {
        "email": "protected@example.com",
        "role": "user",
        "password": "pass12345678",
    }
    signup_resp = await client.post("/profile/signup", json=payload)
    user_id = signup_resp.json()["id"]

    response = await client.delete(f"/profile/{user_id}", headers=auth_headers_user)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_signup_cannot_choose_admin_role(client: AsyncClient, fake_model):
    """Role sent at signup is ignored, the account is a regular user"""
    payload = {
        "email": "wannabe@example.com",
        "password": "pass12345678",
        "role": "admin",
    }
    signup_resp = await client.post("/profile/signup", json=payload)
    assert signup_resp.status_code == 201
    assert signup_resp.json()["role"] == "user"

    login = await client.post(
        "/profile/login", json={"email": payload["email"], "password": payload["password"]}
    )
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    fake_model.intent_reply = '{"queryType": "USER_WITH_MOST_BOOKS"}'
    response = await client.post(
        "/ai/query", json={"question": "Who owns the most books?"}, headers=headers
    )
    assert response.status_code == 403

    admin_only = await client.get("/books/admin/all", headers=headers)
    assert admin_only.status_code == 403
