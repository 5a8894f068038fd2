"""
Pydantic schemas for the step-up sign-in endpoints.

WHY: The challenge DTO is the only sign-in state the client keeps between
pages, besides the challenge id. Its shape is versioned so that clients
can detect a change instead of misreading fields.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class FactorHintResponse(BaseModel):
    """The enrolled factor a sign-in has to be resolved with."""

    factor_uid: str
    factor_type: str = Field(..., description="'totp' or 'phone'")
    display_name: Optional[str] = None
    phone_hint: Optional[str] = Field(None, description="Phone number with all but the last 4 digits masked")

    class Config:
        from_attributes = True


class ChallengeResponse(BaseModel):
    """Versioned view of a pending step-up challenge."""

    version: int = Field(..., description="DTO version")
    challenge_id: str
    stage: str = Field(..., description="awaiting_factor or awaiting_security_question")
    route: str = Field(..., description="Step-up page for this stage")
    expires_at: datetime
    attempts_remaining: int
    factor: Optional[FactorHintResponse] = None
    security_question: Optional[str] = None
    sms_sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StepUpPageResponse(BaseModel):
    """
    Guard result for a step-up page load.

    WHY: A visitor who already holds a full session and has no pending
    challenge is sent to the dashboard instead of seeing an error.
    """

    route: str
    challenge: Optional[ChallengeResponse] = None
    message: Optional[str] = None


class FactorCodeRequest(BaseModel):
    """TOTP or SMS code for the current challenge."""

    code: str = Field(..., min_length=6, max_length=8, description="Verification code")

    class Config:
        json_schema_extra = {"example": {"code": "123456"}}


class SecurityAnswerRequest(BaseModel):
    """Answer to the account's security question."""

    answer: str = Field(..., min_length=1, max_length=255, description="Answer (case and surrounding spaces ignored)")

    class Config:
        json_schema_extra = {"example": {"answer": "Fido"}}


class AbortResponse(BaseModel):
    """Result of "log out / start over"."""

    route: str = Field(default="/login")
    message: str = Field(default="Signed out. Please log in again.")
