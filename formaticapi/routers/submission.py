import logging
from typing import Annotated, Any, Dict, Iterable, List

import sqlalchemy
from fastapi import APIRouter, Depends, HTTPException, status
from formaticapi.security import get_current_user, is_super_admin
from formaticapi.models.user import UserInDB
from formaticapi.models.form import CHOICE_TYPES, FieldType, FormField
from formaticapi.models.submission import (
    Siblings,
    Submission,
    SubmissionFormInfo,
    SubmissionIn,
    SubmissionWithForm,
)
from formaticapi.routers.form import get_fields, get_form_for_user
from formaticapi.database import (
    database,
    form_table,
    submission_table,
    user_table,
    utcnow,
)

logger = logging.getLogger(__name__)
router = APIRouter()

CurrentUser = Annotated[UserInDB, Depends(get_current_user)]


def is_answered(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True


def answer_problems(fields: Iterable[FormField], data: Dict[str, Any]) -> List[str]:
    """Describe every required field left unanswered and every choice outside its options."""
    problems = []
    for field in fields:
        value = data.get(field.label)
        if not is_answered(value):
            if field.required:
                problems.append(f"'{field.label}' is required")
            continue
        if field.type in CHOICE_TYPES and value not in (field.options or []):
            problems.append(f"'{field.label}' must be one of: {', '.join(field.options or [])}")
        elif field.type == FieldType.CHECKBOX and field.options and isinstance(value, list):
            unknown = [v for v in value if v not in field.options]
            if unknown:
                problems.append(f"'{field.label}' has unknown options: {', '.join(map(str, unknown))}")
    return problems


def is_complete(fields: Iterable[FormField], data: Dict[str, Any]) -> bool:
    return all(is_answered(data.get(f.label)) for f in fields if f.required)


async def get_submission_row(sid: int):
    query = (
        sqlalchemy.select(
            submission_table,
            form_table.c.title,
            form_table.c.client_id,
        )
        .select_from(submission_table.join(form_table, submission_table.c.form_id == form_table.c.id))
        .where(submission_table.c.id == sid)
    )
    row = await database.fetch_one(query)
    if not row:
        raise HTTPException(status_code=404, detail=f"Submission with ID {sid} not found")
    return row


def check_owner(client_id: int, current_user: UserInDB, detail: str):
    if not is_super_admin(current_user) and client_id != current_user.id:
        raise HTTPException(status_code=403, detail=detail)


@router.post("", response_model=Submission, status_code=201)
async def create_submission(submission: SubmissionIn):
    q = form_table.select().where(form_table.c.id == submission.form_id)
    form = await database.fetch_one(q)
    if not form or not form.published:
        raise HTTPException(status_code=404, detail="Form not found or not published")

    problems = answer_problems(await get_fields(form.id), submission.data)
    if problems:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=problems)

    now = utcnow()
    query = submission_table.insert().values(
        form_id=form.id,
        data=submission.data,
        created_at=now,
    )
    sid = await database.execute(query)
    logger.info("Submission %s received for form %s", sid, form.id)
    return Submission(id=sid, form_id=form.id, data=submission.data, created_at=now)


@router.get("", response_model=List[SubmissionWithForm], status_code=200)
async def list_submissions(current_user: CurrentUser):
    query = (
        sqlalchemy.select(
            submission_table,
            form_table.c.title,
            form_table.c.client_id,
            user_table.c.name.label("client_name"),
            user_table.c.email.label("client_email"),
        )
        .select_from(
            submission_table
            .join(form_table, submission_table.c.form_id == form_table.c.id)
            .join(user_table, form_table.c.client_id == user_table.c.id)
        )
        .order_by(submission_table.c.created_at.desc(), submission_table.c.id.desc())
    )
    admin = is_super_admin(current_user)
    if not admin:
        query = query.where(form_table.c.client_id == current_user.id)

    rows = await database.fetch_all(query)
    return [
        SubmissionWithForm(
            id=row.id,
            form_id=row.form_id,
            data=row.data,
            created_at=row.created_at,
            form=SubmissionFormInfo(
                title=row.title,
                client_id=row.client_id,
                client_name=row.client_name if admin else None,
                client_email=row.client_email if admin else None,
            ),
        )
        for row in rows
    ]


@router.get("/form/{form_id}", response_model=List[Submission], status_code=200)
async def list_form_submissions(form_id: int, current_user: CurrentUser):
    form = await database.fetch_one(form_table.select().where(form_table.c.id == form_id))
    if not form:
        raise HTTPException(status_code=404, detail=f"Form with ID {form_id} not found")
    check_owner(form.client_id, current_user, "You do not have permission to access submissions for this form")

    query = (
        submission_table.select()
        .where(submission_table.c.form_id == form_id)
        .order_by(submission_table.c.created_at.desc(), submission_table.c.id.desc())
    )
    rows = await database.fetch_all(query)
    return [Submission.model_validate(row) for row in rows]


@router.get("/{sid}", response_model=SubmissionWithForm, status_code=200)
async def get_submission(sid: int, current_user: CurrentUser):
    row = await get_submission_row(sid)
    check_owner(row.client_id, current_user, "You do not have permission to access this submission")
    return SubmissionWithForm(
        id=row.id,
        form_id=row.form_id,
        data=row.data,
        created_at=row.created_at,
        form=SubmissionFormInfo(title=row.title, client_id=row.client_id),
    )


@router.get("/{sid}/siblings", response_model=Siblings, status_code=200)
async def get_siblings(sid: int, current_user: CurrentUser):
    row = await get_submission_row(sid)
    await get_form_for_user(row.form_id, current_user)

    same_form = submission_table.c.form_id == row.form_id
    created, ident = submission_table.c.created_at, submission_table.c.id
    newer = sqlalchemy.or_(
        created > row.created_at,
        sqlalchemy.and_(created == row.created_at, ident > row.id),
    )
    older = sqlalchemy.or_(
        created < row.created_at,
        sqlalchemy.and_(created == row.created_at, ident < row.id),
    )
    next_query = (
        sqlalchemy.select(ident).where(same_form, newer).order_by(created.asc(), ident.asc()).limit(1)
    )
    previous_query = (
        sqlalchemy.select(ident).where(same_form, older).order_by(created.desc(), ident.desc()).limit(1)
    )
    return Siblings(
        next=await database.fetch_val(next_query),
        previous=await database.fetch_val(previous_query),
    )


@router.delete("/{sid}", status_code=200)
async def delete_submission(sid: int, current_user: CurrentUser):
    row = await get_submission_row(sid)
    check_owner(row.client_id, current_user, "You do not have permission to access this submission")

    await database.execute(submission_table.delete().where(submission_table.c.id == sid))
    logger.info("Submission %s deleted", sid)
    return {"id": sid}
