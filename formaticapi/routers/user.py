import logging
from typing import Annotated, List

import sqlalchemy
from fastapi import APIRouter, Depends, HTTPException, status
from minio import Minio
from formaticapi.models.user import (
    Role,
    User,
    UserCreateIn,
    UserInDB,
    UserUpdateIn,
    UserWithStats,
)
from formaticapi.routers.form import delete_forms_where
from formaticapi.storage import get_minio_client, remove_objects
from formaticapi.security import get_password_hash, get_user, get_user_by_id, require_roles
from formaticapi.database import (
    INTEGRITY_ERRORS,
    database,
    form_table,
    submission_table,
    user_table,
    utcnow,
)

logger = logging.getLogger(__name__)
router = APIRouter()

SuperAdmin = Annotated[UserInDB, Depends(require_roles([Role.SUPER_ADMIN]))]


async def get_user_stats(user_id: int) -> dict:
    forms_query = (
        sqlalchemy.select(sqlalchemy.func.count(form_table.c.id))
        .where(form_table.c.client_id == user_id)
    )
    submissions_query = (
        sqlalchemy.select(sqlalchemy.func.count(submission_table.c.id))
        .select_from(submission_table.join(form_table, submission_table.c.form_id == form_table.c.id))
        .where(form_table.c.client_id == user_id)
    )
    return {
        "forms_count": await database.fetch_val(forms_query) or 0,
        "submissions_count": await database.fetch_val(submissions_query) or 0,
    }


async def with_stats(user: User) -> UserWithStats:
    stats = await get_user_stats(user.id)
    return UserWithStats(**user.model_dump(exclude={"password_hash"}), **stats)


def email_conflict() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Email already exists",
    )


async def insert_user(email: str, password: str, name: str | None, role: Role, user_status) -> UserInDB:
    if await get_user(email) is not None:
        raise email_conflict()
    now = utcnow()
    query = user_table.insert().values(
        email=email,
        password_hash=get_password_hash(password),
        name=name,
        role=role.value,
        status=user_status.value,
        last_login=None,
        created_at=now,
        updated_at=now,
    )

    logger.debug(query)

    # a concurrent insert can still win the race past the lookup above
    try:
        async with database.transaction():
            await database.execute(query)
    except INTEGRITY_ERRORS:
        raise email_conflict()
    logger.info("Created %s account", role.value, extra={"email": email})
    return await get_user(email)


async def get_user_or_404(uid: int) -> UserInDB:
    user = await get_user_by_id(uid)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail=f"User with ID {uid} not found",
        )
    return user


@router.post("", response_model=User, status_code=201)
async def create_user(user: UserCreateIn, current_user: SuperAdmin):
    return await insert_user(user.email, user.password, user.name, user.role, user.status)


@router.get("", response_model=List[UserWithStats], status_code=200)
async def list_users(current_user: SuperAdmin):
    forms_count = (
        sqlalchemy.select(sqlalchemy.func.count(form_table.c.id))
        .where(form_table.c.client_id == user_table.c.id)
        .scalar_subquery()
    )
    submissions_count = (
        sqlalchemy.select(sqlalchemy.func.count(submission_table.c.id))
        .select_from(submission_table.join(form_table, submission_table.c.form_id == form_table.c.id))
        .where(form_table.c.client_id == user_table.c.id)
        .scalar_subquery()
    )
    query = (
        sqlalchemy.select(
            user_table,
            forms_count.label("forms_count"),
            submissions_count.label("submissions_count"),
        )
        .order_by(user_table.c.created_at, user_table.c.id)
    )

    logger.debug(query)

    rows = await database.fetch_all(query)
    return [UserWithStats.model_validate(row) for row in rows]


@router.get("/{uid}", response_model=UserWithStats, status_code=200)
async def get_specific_user(uid: int, current_user: SuperAdmin):
    user = await get_user_or_404(uid)
    return await with_stats(user)


@router.patch("/{uid}", response_model=User, status_code=200)
async def update_user(uid: int, user: UserUpdateIn, current_user: SuperAdmin):
    existing_user = await get_user_or_404(uid)

    update_values = user.model_dump(exclude_unset=True, exclude={"password"})
    if user.email is not None and user.email != existing_user.email:
        if await get_user(user.email) is not None:
            raise email_conflict()
    if user.password is not None:
        update_values['password_hash'] = get_password_hash(user.password)
    for key in ("email", "role", "status"):
        if key in update_values and update_values[key] is None:
            del update_values[key]
    # enum members go to the database as their values
    for key in ("role", "status"):
        if key in update_values:
            update_values[key] = update_values[key].value

    if update_values:
        update_values['updated_at'] = utcnow()
        query = (
            user_table.update()
            .where(user_table.c.id == uid)
            .values(**update_values)
        )
        logger.debug(query)
        try:
            async with database.transaction():
                await database.execute(query)
        except INTEGRITY_ERRORS:
            raise email_conflict()

    return await get_user_by_id(uid)


@router.delete("/{uid}", status_code=200)
async def delete_user(
    uid: int,
    current_user: SuperAdmin,
    minio_client: Annotated[Minio, Depends(get_minio_client)],
):
    if uid == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account",
        )
    await get_user_or_404(uid)

    async with database.transaction():
        object_names = await delete_forms_where(form_table.c.client_id == uid)
        query = user_table.delete().where(user_table.c.id == uid)
        logger.debug(query)
        await database.execute(query)

    remove_objects(minio_client, object_names)
    logger.info("Deleted user %s", uid)
    return {"id": uid}
