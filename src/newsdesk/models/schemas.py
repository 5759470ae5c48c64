import re
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")

NAME_PATTERN = re.compile(r"^[A-Za-z\s]+$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SPECIAL_CHARS = set("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")

# Response bodies are camelCase; attributes and ORM rows keep snake_case names.
OUTPUT_CONFIG = ConfigDict(
    from_attributes=True,
    alias_generator=AliasGenerator(
        validation_alias=lambda name: AliasChoices(name, to_camel(name)),
        serialization_alias=to_camel,
    ),
)


class UserRole(str, Enum):
    AUTHOR = "author"
    READER = "reader"


class ArticleStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"


# Envelopes


class ApiResponse(BaseModel, Generic[T]):
    Success: bool = True
    Message: str
    Object: T | None = None
    Errors: list[str] | None = None


class PaginatedResponse(BaseModel, Generic[T]):
    Success: bool = True
    Message: str
    Object: list[T]
    PageNumber: int
    PageSize: int
    TotalSize: int
    Errors: list[str] | None = None


# Auth


class SignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str
    password: str = Field(min_length=8)
    role: UserRole

    @field_validator("name")
    @classmethod
    def _name_letters_only(cls, value: str) -> str:
        if not NAME_PATTERN.match(value):
            raise ValueError("Name must contain only alphabets and spaces")
        return value

    @field_validator("email")
    @classmethod
    def _email_format(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email format")
        return value.lower()

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        checks = (
            any(c.islower() for c in value),
            any(c.isupper() for c in value),
            any(c.isdigit() for c in value),
            any(c in SPECIAL_CHARS for c in value),
        )
        if not all(checks):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character"
            )
        return value


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _email_format(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email format")
        return value.lower()


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole

    model_config = OUTPUT_CONFIG


class LoginResult(BaseModel):
    token: str
    user: UserOut

    model_config = OUTPUT_CONFIG


class TokenPayload(BaseModel):
    sub: str
    role: UserRole


# Articles


class ArticleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=150)
    content: str = Field(min_length=50)
    category: str = Field(min_length=1)
    status: ArticleStatus = ArticleStatus.DRAFT


class ArticleUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=150)
    content: str | None = Field(default=None, min_length=50)
    category: str | None = Field(default=None, min_length=1)
    status: ArticleStatus | None = None


class AuthorSummary(BaseModel):
    id: str
    name: str

    model_config = OUTPUT_CONFIG


class ArticleOut(BaseModel):
    id: str
    title: str
    content: str
    category: str
    status: ArticleStatus
    author_id: str
    author: AuthorSummary | None = None
    created_at: datetime
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    model_config = OUTPUT_CONFIG


class DashboardItemOut(BaseModel):
    id: str
    title: str
    category: str
    status: ArticleStatus
    created_at: datetime
    total_views: int

    model_config = OUTPUT_CONFIG


class HealthStatus(BaseModel):
    status: str
    timestamp: datetime
