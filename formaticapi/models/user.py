import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    CLIENT = "CLIENT"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    LOCKED = "LOCKED"


class User(BaseModel):
    """Public representation of a user, never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str | None = None
    role: Role = Role.CLIENT
    status: UserStatus = UserStatus.ACTIVE
    last_login: datetime.datetime | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class UserWithStats(User):
    forms_count: int = 0
    submissions_count: int = 0


class UserInDB(User):
    password_hash: str


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str | None = None


class UserCreateIn(UserIn):
    role: Role = Role.CLIENT
    status: UserStatus = UserStatus.ACTIVE


class UserUpdateIn(BaseModel):
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=6)
    name: str | None = None
    role: Role | None = None
    status: UserStatus | None = None
