"""
Pydantic schemas for the security question.

WHY: The question is picked from a fixed list so that answers are
something a user can reproduce years later. The answer itself is never
returned by any endpoint.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

SECURITY_QUESTIONS = [
    "What was your first pet's name?",
    "What is your mother's maiden name?",
    "What was the name of your elementary school?",
    "In what city were you born?",
    "What is the name of your favorite childhood friend?",
]


class SecurityQuestionOptionsResponse(BaseModel):
    questions: list[str]


class SecurityQuestionStatusResponse(BaseModel):
    """Whether a question is set, and which one."""

    is_set: bool
    question: Optional[str] = None


class SetSecurityQuestionRequest(BaseModel):
    """
    Set or change the security question.

    WHY: Changing an existing question needs the current password, since
    the question decides which devices can sign in without it.
    """

    question: str = Field(..., description="One of the offered questions")
    answer: str = Field(..., min_length=3, max_length=255, description="Answer (at least 3 characters)")
    confirm_answer: str = Field(..., max_length=255)
    password: Optional[str] = Field(None, max_length=100, description="Current password, required when changing")

    @field_validator("question")
    @classmethod
    def validate_question(cls, v: str) -> str:
        if v not in SECURITY_QUESTIONS:
            raise ValueError("Please select one of the offered questions.")
        return v

    @field_validator("answer")
    @classmethod
    def validate_answer(cls, v: str) -> str:
        if len(v.strip()) < 3:
            raise ValueError("Answer must be at least 3 characters long.")
        return v

    @model_validator(mode="after")
    def answers_match(self) -> "SetSecurityQuestionRequest":
        if self.answer != self.confirm_answer:
            raise ValueError("Answers do not match.")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "question": "What was your first pet's name?",
                "answer": "Fido",
                "confirm_answer": "Fido",
            }
        }
