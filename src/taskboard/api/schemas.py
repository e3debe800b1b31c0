from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import Priority

TITLE_MAX_LENGTH = 100
TEXT_MAX_LENGTH = 500

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not s:
        raise ValueError("Title is required")
    if len(s) > TITLE_MAX_LENGTH:
        raise ValueError("Title is too long")
    return s


def _clean_tags(v: Optional[List[str]]) -> Optional[List[str]]:
    """
    Strip tag names, drop blanks and keep only the first occurrence of each
    name. Tag names are case-sensitive, so "Work" and "work" are distinct.
    """
    if v is None:
        return v
    out: List[str] = []
    for raw in v:
        name = raw.strip()
        if name and name not in out:
            out.append(name)
    return out


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "title": "Prepare sprint review",
                "description": "Sync with @akshita about the demo",
                "priority": "HIGH",
                "tags": ["Work", "Meeting"],
            }
        },
    )

    title: str = Field(..., description="Short title for the todo item", max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(
        default=None, description="Free text; @name tokens become mentions", max_length=TEXT_MAX_LENGTH
    )
    priority: Priority = Field(default=Priority.MEDIUM, description="HIGH, MEDIUM or LOW")
    tags: Optional[List[str]] = Field(default=None, description="Tag names, created on first use")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..100 length.
        """
        if v is None:
            raise ValueError("Title is required")
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Partial update of a Todo item.

    Only the fields listed here can be patched; unknown keys are rejected so a
    patch for one mutation kind never leaks fields into another. Fields that
    were not sent are left untouched (see `model_fields_set`).
    """

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "title": "Prepare sprint review slides",
                "description": "Ask @mohan for the numbers",
                "priority": "MEDIUM",
                "tags": ["Work"],
            }
        },
    )

    title: Optional[str] = Field(default=None, description="Short title for the todo item", max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, description="Free text; replaces mentions on save", max_length=TEXT_MAX_LENGTH)
    priority: Optional[Priority] = Field(default=None, description="HIGH, MEDIUM or LOW")
    tags: Optional[List[str]] = Field(default=None, description="Replaces the whole tag set when given")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 1..100 length.
        """
        return _clean_title(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)


# PUBLIC_INTERFACE
class NoteCreate(BaseModel):
    """Schema for adding a note to a todo."""

    model_config = ConfigDict(extra="forbid")

    todo_id: str = Field(..., min_length=1, description="Id of the todo the note belongs to")
    content: str = Field(..., description="Note text", max_length=TEXT_MAX_LENGTH)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("Content is required")
        return s


# PUBLIC_INTERFACE
class UserSignup(BaseModel):
    """
    Schema for account registration.

    Password rules: at least 8 characters, one uppercase letter and one digit;
    `confirm_password` must repeat it.
    """

    name: str = Field(..., min_length=2, description="Display name")
    username: str = Field(..., min_length=5, description="Handle used for @mentions")
    email: str = Field(..., description="Login email address")
    password: str = Field(..., min_length=8)
    confirm_password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        s = v.strip()
        if not _EMAIL_RE.match(s):
            raise ValueError("Please enter a valid email address")
        return s

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not re.search(r"[A-Z]", v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[0-9]", v):
            raise ValueError("Password must contain at least one number")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "UserSignup":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# PUBLIC_INTERFACE
class UserOut(BaseModel):
    """Public view of a user."""

    id: str
    name: str
    username: Optional[str] = None
    email: str


class TagOut(BaseModel):
    id: str
    name: str


# PUBLIC_INTERFACE
class NoteOut(BaseModel):
    """A note with its author inlined."""

    id: str
    content: str
    todo_id: str
    user_id: str
    created_at: datetime
    user: Optional[UserOut] = None


class MentionOut(BaseModel):
    todo_id: str
    user_id: str
    user: UserOut


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item, relations included.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "8c0d7c1e4a",
                "title": "Prepare sprint review",
                "description": "Sync with @akshita about the demo",
                "priority": "HIGH",
                "user_id": "u1",
                "created_at": "2025-01-25T10:15:30.123456",
                "updated_at": "2025-01-26T09:00:00.000001",
                "tags": [{"id": "t1", "name": "Work"}],
                "notes": [],
                "mentions": [],
            }
        }
    )

    id: str = Field(..., description="Unique identifier of the todo item")
    title: str = Field(..., description="Short title for the todo item")
    description: str = Field(default="", description="Free text description")
    priority: Priority = Field(..., description="HIGH, MEDIUM or LOW")
    user_id: str = Field(..., description="Owner user id")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    tags: List[TagOut] = Field(default_factory=list)
    notes: List[NoteOut] = Field(default_factory=list)
    mentions: List[MentionOut] = Field(default_factory=list)


class PaginationOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., description="Total number of items matching the query")
    page: int = Field(..., description="1-based page number")
    limit: int = Field(..., description="Page size")
    total_pages: int = Field(..., alias="totalPages", description="ceil(total / limit)")
