"""
Pydantic schemas for User-related responses.

These schemas control what user data is exposed through the API.
hashed_password and two_factor_secret are NEVER included in any response
schema.
"""

from datetime import datetime

from pydantic import BaseModel, EmailStr


class UserResponse(BaseModel):
    """Public representation of a User."""
    id: int
    username: str
    email: EmailStr
    two_factor_enabled: bool
    created_at: datetime

    model_config = {"from_attributes": True}
