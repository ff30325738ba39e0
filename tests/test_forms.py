import re
from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from conftest import FEEDBACK_FORM, auth, create_form, submit, upload
from formaticapi.config import config
from formaticapi.database import database, mediafile_table
from formaticapi.routers import form as form_router
from formaticapi.routers.form import generate_slug

pytestmark = pytest.mark.anyio


async def test_generate_slug():
    slug = generate_slug("Hello, World! Survey")
    assert re.fullmatch(r"hello-world-survey-\d{6}", slug)


async def test_generate_slug_truncates_title():
    slug = generate_slug("x" * 80)
    assert slug.startswith("x" * 50 + "-")
    assert len(slug) == 57


async def test_create_form(async_client: AsyncClient, client_token: str, registered_client: dict):
    response = await async_client.post("/api/forms", json=FEEDBACK_FORM, headers=auth(client_token))

    assert response.status_code == 201
    body = response.json()
    assert body["title"] == "Customer Feedback"
    assert body["client_id"] == registered_client["id"]
    assert body["published"] is True
    assert body["slug"].startswith("customer-feedback-")
    assert [f["label"] for f in body["fields"]] == ["Name", "Rating", "Comments"]
    assert body["client"]["email"] == registered_client["email"]


async def test_create_form_with_slug(async_client: AsyncClient, client_token: str):
    form = await create_form(async_client, client_token, slug="feedback")
    assert form["slug"] == "feedback"


async def test_create_form_duplicate_slug(async_client: AsyncClient, client_token: str):
    await create_form(async_client, client_token, slug="feedback")
    response = await async_client.post(
        "/api/forms", json={**FEEDBACK_FORM, "slug": "feedback"}, headers=auth(client_token)
    )
    assert response.status_code == 409


async def test_same_slug_allowed_for_different_clients(
    async_client: AsyncClient, client_token: str, other_token: str
):
    await create_form(async_client, client_token, slug="feedback")
    form = await create_form(async_client, other_token, slug="feedback")
    assert form["slug"] == "feedback"


async def test_create_form_requires_auth(async_client: AsyncClient):
    response = await async_client.post("/api/forms", json=FEEDBACK_FORM)
    assert response.status_code == 401


async def test_choice_field_requires_options(async_client: AsyncClient, client_token: str):
    response = await async_client.post(
        "/api/forms",
        json={"title": "Bad", "fields": [{"label": "Pick", "type": "DROPDOWN"}]},
        headers=auth(client_token),
    )
    assert response.status_code == 422


async def test_get_form_fields_ordered(async_client: AsyncClient, client_token: str):
    form = await create_form(
        async_client,
        client_token,
        fields=[
            {"label": "Third", "type": "TEXT", "order": 5},
            {"label": "First", "type": "TEXT", "order": 1},
            {"label": "Second", "type": "CHECKBOX", "order": 2},
        ],
    )

    response = await async_client.get(f"/api/forms/{form['id']}", headers=auth(client_token))

    assert response.status_code == 200
    assert [f["label"] for f in response.json()["fields"]] == ["First", "Second", "Third"]


async def test_get_form_not_found(async_client: AsyncClient, client_token: str):
    response = await async_client.get("/api/forms/9999", headers=auth(client_token))
    assert response.status_code == 404


async def test_client_cannot_read_other_clients_form(
    async_client: AsyncClient, published_form: dict, other_token: str
):
    response = await async_client.get(f"/api/forms/{published_form['id']}", headers=auth(other_token))
    assert response.status_code == 403


async def test_super_admin_can_read_any_form(async_client: AsyncClient, published_form: dict, admin_token: str):
    response = await async_client.get(f"/api/forms/{published_form['id']}", headers=auth(admin_token))
    assert response.status_code == 200


async def test_list_forms_scoped_to_client(
    async_client: AsyncClient, client_token: str, other_token: str, admin_token: str
):
    mine = await create_form(async_client, client_token, title="Mine")
    theirs = await create_form(async_client, other_token, title="Theirs")
    await submit(async_client, mine["id"], {"Name": "Ann", "Rating": "2"})

    response = await async_client.get("/api/forms", headers=auth(client_token))
    forms = response.json()
    assert [f["id"] for f in forms] == [mine["id"]]
    assert forms[0]["submissions_count"] == 1
    assert forms[0]["client"] is None

    response = await async_client.get("/api/forms", headers=auth(admin_token))
    forms = response.json()
    assert {f["id"] for f in forms} == {mine["id"], theirs["id"]}
    assert all(f["client"] is not None for f in forms)


async def test_update_form(async_client: AsyncClient, client_token: str):
    form = await create_form(async_client, client_token, published=False)

    response = await async_client.patch(
        f"/api/forms/{form['id']}",
        json={"title": "Renamed", "published": True},
        headers=auth(client_token),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Renamed"
    assert body["published"] is True
    assert body["slug"] == form["slug"]


async def test_other_client_cannot_update_form(
    async_client: AsyncClient, published_form: dict, other_token: str
):
    response = await async_client.patch(
        f"/api/forms/{published_form['id']}", json={"title": "Hijacked"}, headers=auth(other_token)
    )
    assert response.status_code == 403


async def test_delete_form_removes_fields_and_submissions(
    async_client: AsyncClient, client_token: str, published_form: dict
):
    submission = await submit(async_client, published_form["id"], {"Name": "Ann", "Rating": "1"})

    response = await async_client.delete(f"/api/forms/{published_form['id']}", headers=auth(client_token))
    assert response.status_code == 200
    assert response.json() == {"id": published_form["id"]}

    response = await async_client.get(f"/api/forms/{published_form['id']}", headers=auth(client_token))
    assert response.status_code == 404
    response = await async_client.get(f"/api/submissions/{submission['id']}", headers=auth(client_token))
    assert response.status_code == 404
    response = await async_client.get("/api/analytics/fields/distribution", headers=auth(client_token))
    assert response.json() == []


async def test_add_field_appends_order(async_client: AsyncClient, client_token: str, published_form: dict):
    response = await async_client.post(
        f"/api/forms/{published_form['id']}/fields",
        json={"label": "Email me", "type": "CHECKBOX"},
        headers=auth(client_token),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["order"] == 3
    assert body["form_id"] == published_form["id"]


async def test_update_field(async_client: AsyncClient, client_token: str, published_form: dict):
    field = published_form["fields"][2]

    response = await async_client.patch(
        f"/api/forms/{published_form['id']}/fields/{field['id']}",
        json={"label": "Remarks", "order": -1, "placeholder": "Anything else?"},
        headers=auth(client_token),
    )

    assert response.status_code == 200
    assert response.json()["label"] == "Remarks"
    response = await async_client.get(f"/api/forms/{published_form['id']}", headers=auth(client_token))
    assert response.json()["fields"][0]["label"] == "Remarks"


async def test_update_field_to_choice_without_options(
    async_client: AsyncClient, client_token: str, published_form: dict
):
    field = published_form["fields"][0]
    response = await async_client.patch(
        f"/api/forms/{published_form['id']}/fields/{field['id']}",
        json={"type": "RADIO"},
        headers=auth(client_token),
    )
    assert response.status_code == 422


async def test_field_from_other_form_not_found(async_client: AsyncClient, client_token: str, published_form: dict):
    other = await create_form(async_client, client_token, title="Other")
    field = other["fields"][0]

    response = await async_client.delete(
        f"/api/forms/{published_form['id']}/fields/{field['id']}", headers=auth(client_token)
    )
    assert response.status_code == 404


async def test_delete_field(async_client: AsyncClient, client_token: str, published_form: dict):
    field = published_form["fields"][2]

    response = await async_client.delete(
        f"/api/forms/{published_form['id']}/fields/{field['id']}", headers=auth(client_token)
    )

    assert response.status_code == 200
    response = await async_client.get(f"/api/forms/{published_form['id']}", headers=auth(client_token))
    assert [f["label"] for f in response.json()["fields"]] == ["Name", "Rating"]


async def test_public_form(async_client: AsyncClient, published_form: dict, registered_client: dict):
    response = await async_client.get(
        f"/api/forms/public/{registered_client['id']}/{published_form['slug']}"
    )

    assert response.status_code == 200
    assert response.json()["id"] == published_form["id"]
    assert len(response.json()["fields"]) == 3


async def test_public_form_hides_drafts(async_client: AsyncClient, client_token: str, registered_client: dict):
    draft = await create_form(async_client, client_token, published=False)
    response = await async_client.get(f"/api/forms/public/{registered_client['id']}/{draft['slug']}")
    assert response.status_code == 404


async def test_slug_taken_after_check_is_conflict(async_client: AsyncClient, client_token: str, monkeypatch):
    await create_form(async_client, client_token, slug="same")

    async def slug_looks_free(*args, **kwargs):
        return None

    # the insert itself must turn the unique constraint into a 409
    monkeypatch.setattr(form_router, "ensure_slug_available", slug_looks_free)
    response = await async_client.post(
        "/api/forms", json={**FEEDBACK_FORM, "slug": "same"}, headers=auth(client_token)
    )
    assert response.status_code == 409

    other = await create_form(async_client, client_token, slug="other")
    response = await async_client.patch(
        f"/api/forms/{other['id']}", json={"slug": "same"}, headers=auth(client_token)
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Slug 'same' is already used by another form"


async def test_fields_with_equal_order_keep_insertion_order(async_client: AsyncClient, client_token: str):
    form = await create_form(
        async_client,
        client_token,
        fields=[
            {"label": "A", "type": "TEXT", "order": 1},
            {"label": "B", "type": "TEXT", "order": 1},
            {"label": "Z", "type": "TEXT", "order": 0},
        ],
    )
    response = await async_client.post(
        f"/api/forms/{form['id']}/fields",
        json={"label": "C", "type": "TEXT", "order": 1},
        headers=auth(client_token),
    )
    assert response.status_code == 201

    response = await async_client.get(f"/api/forms/{form['id']}", headers=auth(client_token))
    assert [f["label"] for f in response.json()["fields"]] == ["Z", "A", "B", "C"]


async def test_delete_form_removes_media_records(
    async_client: AsyncClient, client_token: str, published_form: dict, minio_client: MagicMock
):
    first = await upload(async_client, published_form["id"], name="a.txt")
    await upload(async_client, published_form["id"], name="b.txt")
    object_name = first["url"].rsplit("/", 1)[-1]

    response = await async_client.delete(f"/api/forms/{published_form['id']}", headers=auth(client_token))
    assert response.status_code == 200

    rows = await database.fetch_all(
        mediafile_table.select().where(mediafile_table.c.form_id == published_form["id"])
    )
    assert rows == []
    assert minio_client.remove_object.call_count == 2
    minio_client.remove_object.assert_any_call(bucket_name=config.MINIO_BUCKET, object_name=object_name)
