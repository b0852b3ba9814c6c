"""Pydantic schemas for user self-service endpoints."""

from pydantic import BaseModel, EmailStr, Field


class UpdateProfileRequest(BaseModel):
    """Request schema for updating the authenticated user's profile."""

    name: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    """Request schema for changing the password of the authenticated user."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class DeleteAccountRequest(BaseModel):
    """Request schema confirming account deletion."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
