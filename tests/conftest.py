import os
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

os.environ["ENV_STATE"] = "test"
from formaticapi.database import database  # noqa: E402
from formaticapi.main import app  # noqa: E402
from formaticapi.models.user import Role, UserStatus  # noqa: E402
from formaticapi.routers.user import insert_user  # noqa: E402
from formaticapi.storage import get_minio_client  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def db() -> AsyncGenerator:
    await database.connect()
    yield
    await database.disconnect()
    app.dependency_overrides.clear()


@pytest.fixture()
async def async_client() -> AsyncGenerator:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def register(async_client: AsyncClient, email: str, password: str = "secret123", name: str | None = None) -> dict:
    response = await async_client.post(
        "/api/auth/register", json={"email": email, "password": password, "name": name}
    )
    assert response.status_code == 201, response.text
    return {**response.json(), "password": password}


async def login(async_client: AsyncClient, email: str, password: str) -> str:
    response = await async_client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


@pytest.fixture()
async def registered_client(async_client: AsyncClient) -> dict:
    return await register(async_client, "client@formatic.io", name="Test Client")


@pytest.fixture()
async def client_token(async_client: AsyncClient, registered_client: dict) -> str:
    return await login(async_client, registered_client["email"], registered_client["password"])


@pytest.fixture()
async def other_client(async_client: AsyncClient) -> dict:
    return await register(async_client, "other@formatic.io", name="Other Client")


@pytest.fixture()
async def other_token(async_client: AsyncClient, other_client: dict) -> str:
    return await login(async_client, other_client["email"], other_client["password"])


@pytest.fixture()
async def super_admin() -> dict:
    user = await insert_user("admin@formatic.io", "admin123", "Super Admin", Role.SUPER_ADMIN, UserStatus.ACTIVE)
    return {**user.model_dump(), "password": "admin123"}


@pytest.fixture()
async def admin_token(async_client: AsyncClient, super_admin: dict) -> str:
    return await login(async_client, super_admin["email"], super_admin["password"])


FEEDBACK_FORM = {
    "title": "Customer Feedback",
    "description": "Tell us what you think",
    "published": True,
    "fields": [
        {"label": "Name", "type": "TEXT", "required": True, "order": 0},
        {"label": "Rating", "type": "RADIO", "required": True, "order": 1, "options": ["1", "2", "3"]},
        {"label": "Comments", "type": "TEXT", "order": 2},
    ],
}


async def create_form(async_client: AsyncClient, token: str, **overrides) -> dict:
    body = {**FEEDBACK_FORM, **overrides}
    response = await async_client.post("/api/forms", json=body, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()


async def submit(async_client: AsyncClient, form_id: int, data: dict) -> dict:
    response = await async_client.post("/api/submissions", json={"form_id": form_id, "data": data})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture()
async def published_form(async_client: AsyncClient, client_token: str) -> dict:
    return await create_form(async_client, client_token)


@pytest.fixture()
def minio_client() -> MagicMock:
    client = MagicMock()
    client.bucket_exists.return_value = True
    app.dependency_overrides[get_minio_client] = lambda: client
    return client


async def upload(async_client: AsyncClient, form_id: int, name: str = "notes.txt", content: bytes = b"hi") -> dict:
    response = await async_client.post(
        "/api/uploads", params={"form_id": form_id}, files={"file": (name, content, "text/plain")}
    )
    assert response.status_code == 201, response.text
    return response.json()
