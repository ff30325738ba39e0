import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class SubmissionIn(BaseModel):
    form_id: int
    data: Dict[str, Any]


class Submission(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    form_id: int
    data: Dict[str, Any]
    created_at: Optional[datetime.datetime] = None


class SubmissionFormInfo(BaseModel):
    title: str
    client_id: int
    client_name: Optional[str] = None
    client_email: Optional[str] = None


class SubmissionWithForm(Submission):
    form: SubmissionFormInfo


class Siblings(BaseModel):
    next: Optional[int] = None
    previous: Optional[int] = None
