"""
Pydantic schemas for the profile document.

WHY: Only user-editable fields are accepted, so a profile write can
never touch authentication state (email, verification, claims).
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ProfileResponse(BaseModel):
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    birthday: Optional[date] = None
    phone_number: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileUpdateRequest(BaseModel):
    """
    Merge update: fields left out of the request keep their stored value.

    WHY: The birthday can be set once; changing it later is refused.
    """

    bio: Optional[str] = Field(None, max_length=2000)
    avatar_url: Optional[str] = Field(None, max_length=1024)
    birthday: Optional[date] = None
    phone_number: Optional[str] = Field(None, pattern=r"^\+[1-9]\d{6,14}$")

    @field_validator("birthday")
    @classmethod
    def validate_birthday(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v > date.today():
            raise ValueError("Birthday cannot be in the future.")
        return v

    class Config:
        json_schema_extra = {
            "example": {"bio": "Keeper of family recipes", "birthday": "1990-04-01"}
        }
