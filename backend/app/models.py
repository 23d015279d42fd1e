import re
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional

ALNUM_RE = re.compile(r"^[a-zA-Z0-9]+$")


def _validate_password(v: str) -> str:
    if len(v) < 6:
        raise ValueError("Password must be at least 6 characters")
    if not ALNUM_RE.match(v):
        raise ValueError("Password must be alphanumeric")
    return v


class Signup(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return _validate_password(v)


class Signin(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return _validate_password(v)


class UserUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    old_password: str
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return _validate_password(v)


class UserDelete(BaseModel):
    password: str


class AssignmentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    subject: Optional[str] = Field(default=None, max_length=100)
    due_date: datetime


class AssignmentUpdate(BaseModel):
    """Partial update — omitted fields keep their stored value."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    subject: Optional[str] = Field(default=None, max_length=100)
    due_date: Optional[datetime] = None
    is_completed: Optional[bool] = None
    model_config = {"extra": "ignore"}

    def changes(self) -> dict:
        updates = self.model_dump(exclude_none=True)
        if "due_date" in updates:
            updates["due_date"] = updates["due_date"].isoformat()
        return updates
