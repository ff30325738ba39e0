import logging
import re
import time
from typing import Annotated, List

import sqlalchemy
from fastapi import APIRouter, Depends, HTTPException, status
from minio import Minio
from formaticapi.security import get_current_user, is_super_admin
from formaticapi.models.user import UserInDB
from formaticapi.models.form import (
    CHOICE_TYPES,
    ClientSummary,
    FieldType,
    FormDetail,
    FormField,
    FormFieldIn,
    FormFieldUpdateIn,
    FormIn,
    FormSummary,
    FormUpdateIn,
)
from formaticapi.storage import get_minio_client, remove_objects
from formaticapi.database import (
    INTEGRITY_ERRORS,
    database,
    form_table,
    formfield_table,
    mediafile_table,
    submission_table,
    user_table,
    utcnow,
)


logger = logging.getLogger(__name__)
router = APIRouter()

CurrentUser = Annotated[UserInDB, Depends(get_current_user)]


def generate_slug(title: str) -> str:
    """URL slug from a title, suffixed with the last six digits of the epoch milliseconds."""
    slug = re.sub(r"[^\w\s]", "", title.lower())
    slug = re.sub(r"\s+", "-", slug)[:50]
    return f"{slug}-{str(int(time.time() * 1000))[-6:]}"


async def delete_forms_where(condition) -> List[str]:
    """Delete forms matching ``condition`` with their fields, submissions and media records.

    Returns the storage object names of the deleted media, to be removed from
    the bucket once the surrounding transaction has committed.
    """
    form_ids = sqlalchemy.select(form_table.c.id).where(condition)
    media = await database.fetch_all(
        sqlalchemy.select(mediafile_table.c.object_name).where(mediafile_table.c.form_id.in_(form_ids))
    )
    await database.execute(submission_table.delete().where(submission_table.c.form_id.in_(form_ids)))
    await database.execute(formfield_table.delete().where(formfield_table.c.form_id.in_(form_ids)))
    await database.execute(mediafile_table.delete().where(mediafile_table.c.form_id.in_(form_ids)))
    await database.execute(form_table.delete().where(condition))
    return [m.object_name for m in media]


async def get_form_for_user(fid: int, current_user: UserInDB):
    q = form_table.select().where(form_table.c.id == fid)
    f = await database.fetch_one(q)

    if not f:
        raise HTTPException(status_code=404, detail=f"Form with ID {fid} not found")

    if not is_super_admin(current_user) and f.client_id != current_user.id:
        raise HTTPException(status_code=403, detail="You do not have permission to access this form")
    return f


async def get_fields(fid: int) -> List[FormField]:
    fields_query = formfield_table.select().where(
        formfield_table.c.form_id == fid
    ).order_by(formfield_table.c.order, formfield_table.c.id)
    fields = await database.fetch_all(fields_query)
    return [FormField.model_validate(field) for field in fields]


async def get_client_summary(client_id: int) -> ClientSummary | None:
    q = sqlalchemy.select(user_table.c.id, user_table.c.name, user_table.c.email).where(
        user_table.c.id == client_id
    )
    client = await database.fetch_one(q)
    if client is None:
        return None
    return ClientSummary(id=client.id, name=client.name, email=client.email)


async def build_form_detail(f) -> FormDetail:
    return FormDetail(
        id=f.id,
        title=f.title,
        description=f.description,
        client_id=f.client_id,
        slug=f.slug,
        published=f.published,
        created_at=f.created_at,
        updated_at=f.updated_at,
        fields=await get_fields(f.id),
        client=await get_client_summary(f.client_id),
    )


async def ensure_slug_available(client_id: int, slug: str, exclude_form_id: int | None = None):
    q = form_table.select().where(
        form_table.c.client_id == client_id,
        form_table.c.slug == slug,
    )
    if exclude_form_id is not None:
        q = q.where(form_table.c.id != exclude_form_id)
    if await database.fetch_one(q) is not None:
        raise slug_conflict(slug)


def slug_conflict(slug: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Slug '{slug}' is already used by another form",
    )


async def next_field_order(fid: int) -> int:
    q = sqlalchemy.select(sqlalchemy.func.max(formfield_table.c.order)).where(
        formfield_table.c.form_id == fid
    )
    current = await database.fetch_val(q)
    return 0 if current is None else current + 1


def field_values(field: FormFieldIn, order: int) -> dict:
    return {
        "label": field.label,
        "type": field.type.value,
        "placeholder": field.placeholder,
        "required": field.required,
        "order": order,
        "options": field.options,
    }


@router.get("/public/{client_id}/{slug}", response_model=FormDetail, status_code=200)
async def get_public_form(client_id: int, slug: str):
    q = form_table.select().where(
        form_table.c.client_id == client_id,
        form_table.c.slug == slug,
        form_table.c.published == sqlalchemy.true(),
    )
    f = await database.fetch_one(q)
    if not f:
        raise HTTPException(status_code=404, detail="Form not found")
    return await build_form_detail(f)


@router.post("", response_model=FormDetail, status_code=201)
async def create_form(form: FormIn, current_user: CurrentUser):
    slug = form.slug or generate_slug(form.title)
    await ensure_slug_available(current_user.id, slug)

    now = utcnow()
    try:
        async with database.transaction():
            query = form_table.insert().values(
                title=form.title,
                description=form.description,
                client_id=current_user.id,
                slug=slug,
                published=form.published,
                created_at=now,
                updated_at=now,
            )
            form_id = await database.execute(query)

            for position, f in enumerate(form.fields):
                query_field = formfield_table.insert().values(
                    form_id=form_id,
                    **field_values(f, position if f.order is None else f.order),
                )
                await database.execute(query_field)
    except INTEGRITY_ERRORS:
        # another request took the slug between the check and the insert
        raise slug_conflict(slug)

    logger.info("Form %s created", form_id, extra={"client_id": current_user.id})
    return await build_form_detail(await get_form_for_user(form_id, current_user))


@router.get("", response_model=List[FormSummary], status_code=200)
async def list_forms(current_user: CurrentUser):
    submissions_count = (
        sqlalchemy.select(sqlalchemy.func.count(submission_table.c.id))
        .where(submission_table.c.form_id == form_table.c.id)
        .scalar_subquery()
    )
    query = (
        sqlalchemy.select(
            form_table,
            submissions_count.label("submissions_count"),
            user_table.c.name.label("client_name"),
            user_table.c.email.label("client_email"),
        )
        .select_from(form_table.join(user_table, form_table.c.client_id == user_table.c.id))
        .order_by(form_table.c.created_at.desc(), form_table.c.id.desc())
    )
    admin = is_super_admin(current_user)
    if not admin:
        query = query.where(form_table.c.client_id == current_user.id)

    forms = await database.fetch_all(query)
    result = []
    for f in forms:
        summary = FormSummary.model_validate(f)
        if admin:
            summary.client = ClientSummary(id=f.client_id, name=f.client_name, email=f.client_email)
        result.append(summary)
    return result


@router.get("/{fid}", response_model=FormDetail, status_code=200)
async def get_form(fid: int, current_user: CurrentUser):
    f = await get_form_for_user(fid, current_user)
    return await build_form_detail(f)


@router.patch("/{fid}", response_model=FormDetail, status_code=200)
async def update_form(fid: int, form: FormUpdateIn, current_user: CurrentUser):
    existing_form = await get_form_for_user(fid, current_user)

    update_values = form.model_dump(exclude_unset=True)
    if update_values.get("slug") is not None:
        await ensure_slug_available(existing_form.client_id, update_values["slug"], exclude_form_id=fid)
    # title, slug and published are not nullable
    for key in ("title", "slug", "published"):
        if key in update_values and update_values[key] is None:
            del update_values[key]

    if update_values:
        update_values["updated_at"] = utcnow()
        query = form_table.update().where(form_table.c.id == fid).values(**update_values)
        logger.debug(query)
        try:
            async with database.transaction():
                await database.execute(query)
        except INTEGRITY_ERRORS:
            raise slug_conflict(update_values.get("slug", existing_form.slug))
    return await build_form_detail(await get_form_for_user(fid, current_user))


@router.delete("/{fid}", status_code=200)
async def delete_form(
    fid: int,
    current_user: CurrentUser,
    minio_client: Annotated[Minio, Depends(get_minio_client)],
):
    await get_form_for_user(fid, current_user)

    async with database.transaction():
        object_names = await delete_forms_where(form_table.c.id == fid)

    remove_objects(minio_client, object_names)
    logger.info("Form %s deleted", fid)
    return {"id": fid}


async def get_field_in_form(fid: int, field_id: int):
    q = formfield_table.select().where(formfield_table.c.id == field_id)
    field = await database.fetch_one(q)
    if not field or field.form_id != fid:
        raise HTTPException(
            status_code=404,
            detail=f"Field with ID {field_id} not found in form {fid}",
        )
    return field


@router.post("/{fid}/fields", response_model=FormField, status_code=201)
async def add_field(fid: int, field: FormFieldIn, current_user: CurrentUser):
    await get_form_for_user(fid, current_user)

    order = field.order if field.order is not None else await next_field_order(fid)
    query = formfield_table.insert().values(form_id=fid, **field_values(field, order))
    field_id = await database.execute(query)
    await database.execute(
        form_table.update().where(form_table.c.id == fid).values(updated_at=utcnow())
    )
    return FormField.model_validate(await get_field_in_form(fid, field_id))


@router.patch("/{fid}/fields/{field_id}", response_model=FormField, status_code=200)
async def update_field(fid: int, field_id: int, field: FormFieldUpdateIn, current_user: CurrentUser):
    await get_form_for_user(fid, current_user)
    existing = await get_field_in_form(fid, field_id)

    update_values = field.model_dump(exclude_unset=True)
    for key in ("label", "type", "required", "order"):
        if key in update_values and update_values[key] is None:
            del update_values[key]
    if "options" in update_values and update_values["options"] is None:
        update_values["options"] = []

    field_type = update_values.get("type", FieldType(existing.type))
    options = update_values.get("options", existing.options or [])
    if field_type in CHOICE_TYPES and not options:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{field_type.value} fields need at least one option",
        )
    if "type" in update_values:
        update_values["type"] = update_values["type"].value

    if update_values:
        query = formfield_table.update().where(formfield_table.c.id == field_id).values(**update_values)
        logger.debug(query)
        await database.execute(query)
    return FormField.model_validate(await get_field_in_form(fid, field_id))


@router.delete("/{fid}/fields/{field_id}", status_code=200)
async def delete_field(fid: int, field_id: int, current_user: CurrentUser):
    await get_form_for_user(fid, current_user)
    await get_field_in_form(fid, field_id)

    await database.execute(formfield_table.delete().where(formfield_table.c.id == field_id))
    return {"id": field_id}
