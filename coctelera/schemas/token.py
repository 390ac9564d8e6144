from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class TokenRequest(BaseModel):
    name: str | None = Field(None, max_length=40)
    email: EmailStr = Field(..., max_length=80)
    explanation: str = Field(..., min_length=20, max_length=400)

    @field_validator("name", mode="before")
    @classmethod
    def blank_name_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("explanation", mode="before")
    @classmethod
    def strip_explanation(cls, v):
        return v.strip() if isinstance(v, str) else v


class TokenRequestCreated(BaseModel):
    account_id: str


class ConfirmationResponse(BaseModel):
    account_id: str
    state: str


class TokenInfo(BaseModel):
    account_id: str
    valid_until: datetime
