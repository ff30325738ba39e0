import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from formaticapi.database import database, user_table, utcnow
from formaticapi.models.user import Role, User, UserIn, UserInDB, UserLogin, UserStatus, UserWithStats
from formaticapi.routers.user import insert_user, with_stats
from formaticapi.security import authenticate_user, create_access_token, get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()


async def issue_token(email: str, password: str) -> dict:
    user = await authenticate_user(email, password)
    now = utcnow()
    query = user_table.update().where(user_table.c.id == user.id).values(last_login=now)
    await database.execute(query)
    user.last_login = now

    access_token = create_access_token(user.email)
    logger.info("User logged in", extra={"email": user.email})
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": User.model_validate(user.model_dump()),
    }


@router.post("/login", status_code=200)
async def login(credentials: UserLogin):
    return await issue_token(credentials.email, credentials.password)


@router.post("/token", status_code=200)
async def token(form_data: Annotated[OAuth2PasswordRequestForm, Depends()]):
    # OAuth2 password flow: form-encoded, the email goes in ``username``
    return await issue_token(form_data.username, form_data.password)


@router.post("/register", response_model=User, status_code=201)
async def register(user: UserIn):
    # self-registration never grants anything above CLIENT
    return await insert_user(user.email, user.password, user.name, Role.CLIENT, UserStatus.ACTIVE)


@router.get("/profile", response_model=UserWithStats, status_code=200)
async def profile(current_user: Annotated[UserInDB, Depends(get_current_user)]):
    return await with_stats(current_user)
