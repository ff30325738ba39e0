import datetime
from typing import Optional

from pydantic import BaseModel


class DailyCount(BaseModel):
    date: str
    count: int


class FormQuality(BaseModel):
    total_forms: int
    published_forms: int
    avg_fields_per_form: float
    avg_submissions_per_form: float


class CompletionRate(BaseModel):
    form_id: int
    title: str
    submissions: int
    completed: int
    completion_rate: float


class SubmissionFunnel(BaseModel):
    form_id: int
    submissions: int
    first_submission_at: Optional[datetime.datetime] = None
    last_submission_at: Optional[datetime.datetime] = None


class FieldTypeCount(BaseModel):
    type: str
    count: int
