"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field, constr

from .common import CamelModel


class UserCreate(BaseModel):
    """Payload for creating a new user via registration."""

    login: constr(min_length=3, max_length=64) = Field(
        ..., description="Unique user login consisting of 3-64 characters"
    )
    password: constr(min_length=8, max_length=128) = Field(
        ..., description="Plain text password that will be hashed before storing"
    )
    name: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Name shown to conversation partners"
    )
    profile_pic: str | None = Field(default=None, max_length=512)


class UserRead(CamelModel):
    """Representation of a user returned from the API."""

    id: int
    login: str
    name: str
    profile_pic: str | None = None
    created_at: datetime


class LoginRequest(BaseModel):
    """Payload for user login."""

    login: constr(min_length=3, max_length=64) = Field(..., description="User login")
    password: constr(min_length=8, max_length=128) = Field(..., description="User password")


class Token(BaseModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(
        default=None,
        description="Number of seconds until the access token expires",
    )
    user_id: int | None = None
