import datetime
import sqlite3

import databases
import sqlalchemy
import sqlalchemy.exc
from formaticapi.config import config

metadata = sqlalchemy.MetaData()

# `databases` hands back the driver's own exception, not SQLAlchemy's
INTEGRITY_ERRORS = (sqlalchemy.exc.IntegrityError, sqlite3.IntegrityError)


def utcnow() -> datetime.datetime:
    # naive UTC, SQLite drops tzinfo anyway
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


user_table = sqlalchemy.Table(
    "user",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("email", sqlalchemy.String(255), unique=True, nullable=False),
    sqlalchemy.Column("password_hash", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("name", sqlalchemy.String(128), nullable=True),
    sqlalchemy.Column("role", sqlalchemy.String(16), nullable=False, default="CLIENT"),  # SUPER_ADMIN, CLIENT
    sqlalchemy.Column("status", sqlalchemy.String(16), nullable=False, default="ACTIVE"),  # ACTIVE, INACTIVE, LOCKED
    sqlalchemy.Column("last_login", sqlalchemy.DateTime, nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=False),
)

form_table = sqlalchemy.Table(
    "form",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("title", sqlalchemy.String(256), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text),
    sqlalchemy.Column("client_id", sqlalchemy.ForeignKey("user.id"), nullable=False),
    sqlalchemy.Column("slug", sqlalchemy.String(128), nullable=False),
    sqlalchemy.Column("published", sqlalchemy.Boolean, nullable=False, default=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.UniqueConstraint("client_id", "slug", name="uq_form_client_slug"),
)

formfield_table = sqlalchemy.Table(
    "form_field",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("form.id"), nullable=False),
    sqlalchemy.Column("label", sqlalchemy.String(256), nullable=False),
    sqlalchemy.Column("type", sqlalchemy.String(16), nullable=False),  # TEXT, DROPDOWN, CHECKBOX, RADIO, FILE
    sqlalchemy.Column("placeholder", sqlalchemy.String(256)),
    sqlalchemy.Column("required", sqlalchemy.Boolean, nullable=False, default=False),
    sqlalchemy.Column("order", sqlalchemy.Integer, nullable=False, default=0),
    sqlalchemy.Column("options", sqlalchemy.JSON),
)

submission_table = sqlalchemy.Table(
    "submission",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("form.id"), nullable=False),
    sqlalchemy.Column("data", sqlalchemy.JSON, nullable=False),  # field label -> answer
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=False),
)

mediafile_table = sqlalchemy.Table(
    "media_file",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("form.id"), nullable=False),
    sqlalchemy.Column("filename", sqlalchemy.String(256), nullable=False),
    sqlalchemy.Column("content_type", sqlalchemy.String(128)),
    sqlalchemy.Column("object_name", sqlalchemy.String(512), nullable=False),
    sqlalchemy.Column("url", sqlalchemy.String(512), nullable=False),
    sqlalchemy.Column("size", sqlalchemy.Integer),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=False),
)


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = sqlalchemy.create_engine(config.DATABASE_URL, connect_args=connect_args)

metadata.create_all(engine)
database = databases.Database(
    config.DATABASE_URL, force_rollback=config.DB_FORCE_ROLL_BACK
)
