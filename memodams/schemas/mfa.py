"""
Pydantic schemas for second-factor enrollment.

WHY: An account has zero or one confirmed second factor. Enrollment is a
two-step exchange: start (returns what the user needs to set up the
factor) and confirm (proves possession with a first code).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class FactorResponse(BaseModel):
    """An enrolled factor as shown on the account page."""

    factor_uid: str
    factor_type: str
    display_name: Optional[str] = None
    phone_hint: Optional[str] = None
    enrolled_at: Optional[datetime] = None

    @classmethod
    def from_factor(cls, factor) -> "FactorResponse":
        return cls(
            factor_uid=factor.factor_uid,
            factor_type=factor.factor_type.value,
            display_name=factor.display_name,
            phone_hint=factor.masked_phone,
            enrolled_at=factor.enrolled_at,
        )


class FactorListResponse(BaseModel):
    items: list[FactorResponse]


class TotpEnrollRequest(BaseModel):
    display_name: Optional[str] = Field(None, max_length=255, description="Label shown in the factor list")


class TotpEnrollmentResponse(BaseModel):
    """
    Secret for the authenticator app.

    WHY: The secret is returned exactly once, at enrollment start; it is
    stored encrypted and never shown again.
    """

    factor_uid: str = Field(..., description="Pending factor to confirm")
    secret: str = Field(..., description="Base32 TOTP secret")
    otpauth_uri: str = Field(..., description="otpauth:// URI for QR codes")

    class Config:
        json_schema_extra = {
            "example": {
                "factor_uid": "b1R8mXq0...",
                "secret": "JBSWY3DPEHPK3PXP",
                "otpauth_uri": "otpauth://totp/MemoDams:ada%40example.com?secret=JBSWY3DPEHPK3PXP&issuer=MemoDams",
            }
        }


class PhoneEnrollRequest(BaseModel):
    """Phone number to receive sign-in codes."""

    phone_number: str = Field(
        ...,
        pattern=r"^\+[1-9]\d{6,14}$",
        description="Phone number in E.164 format",
    )
    display_name: Optional[str] = Field(None, max_length=255)

    class Config:
        json_schema_extra = {"example": {"phone_number": "+15555550123"}}


class PhoneEnrollmentResponse(BaseModel):
    factor_uid: str
    phone_hint: Optional[str] = None
    message: str = "A confirmation code was sent to your phone."


class ConfirmFactorRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8, description="First code from the new factor")


class UnenrollRequest(BaseModel):
    """Removing a factor requires the current password."""

    password: str = Field(..., min_length=1, max_length=100)


class UnenrollResponse(BaseModel):
    message: str = "Second factor removed."
