import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FieldType(str, Enum):
    TEXT = "TEXT"
    DROPDOWN = "DROPDOWN"
    CHECKBOX = "CHECKBOX"
    RADIO = "RADIO"
    FILE = "FILE"


# types whose answers must be picked from ``options``
CHOICE_TYPES = {FieldType.DROPDOWN, FieldType.RADIO}


class FormFieldIn(BaseModel):
    label: str = Field(min_length=1)
    type: FieldType
    placeholder: Optional[str] = None
    required: bool = False
    order: Optional[int] = None
    options: List[str] = []

    @model_validator(mode="after")
    def check_options(self):
        if self.type in CHOICE_TYPES and not self.options:
            raise ValueError(f"{self.type.value} fields need at least one option")
        return self


class FormFieldUpdateIn(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1)
    type: Optional[FieldType] = None
    placeholder: Optional[str] = None
    required: Optional[bool] = None
    order: Optional[int] = None
    options: Optional[List[str]] = None


class FormField(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    form_id: int
    label: str
    type: FieldType
    placeholder: Optional[str] = None
    required: bool = False
    order: int = 0
    options: Optional[List[str]] = []


class ClientSummary(BaseModel):
    id: int
    name: Optional[str] = None
    email: str


class FormIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    slug: Optional[str] = Field(default=None, pattern=r"^[\w-]+$")
    published: bool = False
    fields: List[FormFieldIn] = []


class FormUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    slug: Optional[str] = Field(default=None, pattern=r"^[\w-]+$")
    published: Optional[bool] = None


class Form(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    client_id: int
    slug: str
    published: bool = False
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


class FormSummary(Form):
    submissions_count: int = 0
    client: Optional[ClientSummary] = None


class FormDetail(Form):
    fields: List[FormField] = []
    client: Optional[ClientSummary] = None
