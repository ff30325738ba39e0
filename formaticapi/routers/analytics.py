"""Read-only aggregates over users, forms, fields and submissions.

SUPER_ADMIN callers may look at any client (or all of them); CLIENT callers
are always held to their own data.
"""
import csv
import datetime
import io
import logging
from typing import Annotated, Iterable, List, Optional

import sqlalchemy
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from formaticapi.security import get_current_user, is_super_admin, require_roles
from formaticapi.models.user import Role, UserInDB
from formaticapi.models.form import FormField
from formaticapi.models.analytics import (
    CompletionRate,
    DailyCount,
    FieldTypeCount,
    FormQuality,
    SubmissionFunnel,
)
from formaticapi.routers.form import get_form_for_user
from formaticapi.routers.submission import is_complete
from formaticapi.database import (
    database,
    form_table,
    formfield_table,
    submission_table,
    user_table,
    utcnow,
)

logger = logging.getLogger(__name__)
router = APIRouter()

CurrentUser = Annotated[UserInDB, Depends(get_current_user)]
SuperAdmin = Annotated[UserInDB, Depends(require_roles([Role.SUPER_ADMIN]))]

EXPORT_HEADER = [
    "form_id",
    "title",
    "client_email",
    "published",
    "fields",
    "submissions",
    "created_at",
]


def date_window(
    start: Optional[datetime.date],
    end: Optional[datetime.date],
    default_days: int = 30,
) -> tuple[datetime.datetime, datetime.datetime]:
    """Half-open ``[start, end + 1 day)`` datetime window, defaulting to the last ``default_days``."""
    if end is None:
        end = utcnow().date()
    try:
        if start is None:
            start = end - datetime.timedelta(days=default_days)
        window_end = end + datetime.timedelta(days=1)
    except OverflowError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Date range is out of bounds",
        )
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end",
        )
    return (
        datetime.datetime.combine(start, datetime.time.min),
        datetime.datetime.combine(window_end, datetime.time.min),
    )


def scoped_client(current_user: UserInDB, client_id: Optional[int]) -> Optional[int]:
    """Client id to aggregate over, ``None`` meaning every client."""
    if is_super_admin(current_user):
        return client_id
    return current_user.id


def own_client_only(current_user: UserInDB, client_id: Optional[int]) -> Optional[int]:
    if is_super_admin(current_user):
        return client_id
    if client_id is not None and client_id != current_user.id:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return current_user.id


def daily_counts(rows: Iterable) -> List[DailyCount]:
    # sqlite returns the day as text, other backends as a date
    return [DailyCount(date=str(row.day), count=row.total) for row in rows]


@router.get("/clients/growth", response_model=List[DailyCount])
async def client_growth(
    current_user: SuperAdmin,
    days: Annotated[int, Query(ge=1, le=3650)] = 30,
    start: Optional[datetime.date] = None,
    end: Optional[datetime.date] = None,
):
    window_start, window_end = date_window(start, end, default_days=days)
    day = sqlalchemy.func.date(user_table.c.created_at)
    query = (
        sqlalchemy.select(day.label("day"), sqlalchemy.func.count(user_table.c.id).label("total"))
        .where(
            user_table.c.role == Role.CLIENT.value,
            user_table.c.created_at >= window_start,
            user_table.c.created_at < window_end,
        )
        .group_by(day)
        .order_by(day)
    )
    logger.debug(query)
    return daily_counts(await database.fetch_all(query))


@router.get("/forms/quality", response_model=FormQuality)
async def form_quality(current_user: SuperAdmin):
    total_forms = await database.fetch_val(sqlalchemy.select(sqlalchemy.func.count(form_table.c.id)))
    published_forms = await database.fetch_val(
        sqlalchemy.select(sqlalchemy.func.count(form_table.c.id)).where(
            form_table.c.published == sqlalchemy.true()
        )
    )
    total_fields = await database.fetch_val(sqlalchemy.select(sqlalchemy.func.count(formfield_table.c.id)))
    total_submissions = await database.fetch_val(
        sqlalchemy.select(sqlalchemy.func.count(submission_table.c.id))
    )
    divisor = total_forms or 1
    return FormQuality(
        total_forms=total_forms,
        published_forms=published_forms,
        avg_fields_per_form=round(total_fields / divisor, 2),
        avg_submissions_per_form=round(total_submissions / divisor, 2),
    )


@router.get("/forms/completion-rates", response_model=List[CompletionRate])
async def completion_rates(current_user: CurrentUser, client_id: Optional[int] = None):
    scope = scoped_client(current_user, client_id)
    forms_query = form_table.select().order_by(form_table.c.id)
    if scope is not None:
        forms_query = forms_query.where(form_table.c.client_id == scope)
    forms = await database.fetch_all(forms_query)
    if not forms:
        return []

    form_ids = [f.id for f in forms]
    fields = await database.fetch_all(
        formfield_table.select().where(formfield_table.c.form_id.in_(form_ids))
    )
    submissions = await database.fetch_all(
        sqlalchemy.select(submission_table.c.form_id, submission_table.c.data).where(
            submission_table.c.form_id.in_(form_ids)
        )
    )

    fields_by_form = {fid: [] for fid in form_ids}
    for field in fields:
        fields_by_form[field.form_id].append(FormField.model_validate(field))
    totals = {fid: [0, 0] for fid in form_ids}
    for sub in submissions:
        counts = totals[sub.form_id]
        counts[0] += 1
        if is_complete(fields_by_form[sub.form_id], sub.data or {}):
            counts[1] += 1

    return [
        CompletionRate(
            form_id=f.id,
            title=f.title,
            submissions=totals[f.id][0],
            completed=totals[f.id][1],
            completion_rate=round(totals[f.id][1] / totals[f.id][0], 4) if totals[f.id][0] else 0.0,
        )
        for f in forms
    ]


@router.get("/submissions/funnel", response_model=SubmissionFunnel)
async def submission_funnel(form_id: int, current_user: CurrentUser):
    await get_form_for_user(form_id, current_user)
    query = sqlalchemy.select(
        sqlalchemy.func.count(submission_table.c.id).label("submissions"),
        sqlalchemy.func.min(submission_table.c.created_at).label("first"),
        sqlalchemy.func.max(submission_table.c.created_at).label("last"),
    ).where(submission_table.c.form_id == form_id)
    row = await database.fetch_one(query)
    return SubmissionFunnel(
        form_id=form_id,
        submissions=row.submissions,
        first_submission_at=row.first,
        last_submission_at=row.last,
    )


@router.get("/submissions/trends", response_model=List[DailyCount])
async def submission_trends(
    current_user: CurrentUser,
    client_id: Optional[int] = None,
    start: Optional[datetime.date] = None,
    end: Optional[datetime.date] = None,
):
    scope = own_client_only(current_user, client_id)
    window_start, window_end = date_window(start, end)
    day = sqlalchemy.func.date(submission_table.c.created_at)
    query = (
        sqlalchemy.select(day.label("day"), sqlalchemy.func.count(submission_table.c.id).label("total"))
        .select_from(submission_table.join(form_table, submission_table.c.form_id == form_table.c.id))
        .where(
            submission_table.c.created_at >= window_start,
            submission_table.c.created_at < window_end,
        )
        .group_by(day)
        .order_by(day)
    )
    if scope is not None:
        query = query.where(form_table.c.client_id == scope)
    return daily_counts(await database.fetch_all(query))


@router.get("/fields/distribution", response_model=List[FieldTypeCount])
async def field_distribution(current_user: CurrentUser, client_id: Optional[int] = None):
    scope = scoped_client(current_user, client_id)
    query = (
        sqlalchemy.select(formfield_table.c.type, sqlalchemy.func.count(formfield_table.c.id).label("total"))
        .select_from(formfield_table.join(form_table, formfield_table.c.form_id == form_table.c.id))
        .group_by(formfield_table.c.type)
        .order_by(formfield_table.c.type)
    )
    if scope is not None:
        query = query.where(form_table.c.client_id == scope)
    rows = await database.fetch_all(query)
    return [FieldTypeCount(type=row.type, count=row.total) for row in rows]


def build_dashboard_csv(rows: Iterable) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\r\n")
    writer.writerow(EXPORT_HEADER)
    for row in rows:
        writer.writerow([
            row.id,
            row.title,
            row.client_email,
            "true" if row.published else "false",
            row.fields,
            row.submissions,
            row.created_at.isoformat() if row.created_at else "",
        ])
    return buf.getvalue()


@router.get("/export")
async def export_dashboard_data(
    current_user: CurrentUser,
    client_id: Optional[int] = None,
    start: Optional[datetime.date] = None,
    end: Optional[datetime.date] = None,
):
    scope = own_client_only(current_user, client_id)
    fields_count = (
        sqlalchemy.select(sqlalchemy.func.count(formfield_table.c.id))
        .where(formfield_table.c.form_id == form_table.c.id)
        .scalar_subquery()
    )
    submissions_count = (
        sqlalchemy.select(sqlalchemy.func.count(submission_table.c.id))
        .where(submission_table.c.form_id == form_table.c.id)
        .scalar_subquery()
    )
    query = (
        sqlalchemy.select(
            form_table.c.id,
            form_table.c.title,
            form_table.c.published,
            form_table.c.created_at,
            user_table.c.email.label("client_email"),
            fields_count.label("fields"),
            submissions_count.label("submissions"),
        )
        .select_from(form_table.join(user_table, form_table.c.client_id == user_table.c.id))
        .order_by(form_table.c.created_at, form_table.c.id)
    )
    if scope is not None:
        query = query.where(form_table.c.client_id == scope)
    if start is not None or end is not None:
        window_start, window_end = date_window(start, end)
        query = query.where(
            form_table.c.created_at >= window_start,
            form_table.c.created_at < window_end,
        )

    rows = await database.fetch_all(query)
    logger.info("Exporting %d forms", len(rows), extra={"client_id": scope})
    return Response(
        content=build_dashboard_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=dashboard-data.csv"},
    )
