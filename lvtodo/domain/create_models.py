"""Pydantic models for validating input before records are created or edited."""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from lvtodo.domain.task import Difficulty


MAX_TITLE_LENGTH = 120
MAX_NAME_LENGTH = 50


def _clean_title(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Title cannot be empty")
    if len(v) > MAX_TITLE_LENGTH:
        raise ValueError(f"Title too long (max {MAX_TITLE_LENGTH} characters)")
    return v


class UserCreate(BaseModel):
    """Pydantic model for creating a user record."""

    display_name: str = Field(..., description="Display name of the user")
    email: str = Field(default="", description="Email address for notifications")

    @field_validator("display_name")
    @classmethod
    def validate_name_usable(cls, v: str) -> str:
        """Validate name is usable - allows Unicode letters, digits, spaces, hyphens, apostrophes."""
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        if len(v) > MAX_NAME_LENGTH:
            raise ValueError(f"Name too long (max {MAX_NAME_LENGTH} characters)")
        if not re.match(r"^[\w\s'.-]+$", v, re.UNICODE):
            raise ValueError("Name can only contain letters, digits, spaces, dots, hyphens, and apostrophes")
        return v

    @field_validator("email")
    @classmethod
    def validate_email_shape(cls, v: str) -> str:
        v = v.strip()
        if v and not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", v):
            msg = "Email address is not valid"
            raise ValueError(msg)
        return v


class GroupCreate(BaseModel):
    name: str = Field(..., description="Group name")
    description: str = Field(default="")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_title(v)


class TaskCreate(BaseModel):
    """Pydantic model for creating a task record."""

    title: str
    description: str = ""
    difficulty: Difficulty
    assigned_to: str
    group_id: str
    deadline: datetime

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)


class TaskUpdate(BaseModel):
    """Editable task details. Rewards are not editable."""

    title: str | None = None
    description: str | None = None
    difficulty: Difficulty | None = None
    deadline: datetime | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str | None:
        return None if v is None else _clean_title(v)


class WishCreate(BaseModel):
    title: str
    description: str = ""
    group_id: str

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)
