from datetime import datetime

from pydantic import BaseModel

from coctelera.models.api_user import AccountState


class ClientResponse(BaseModel):
    id: str
    name: str | None
    email: str
    explanation: str
    state: AccountState
    validated: bool
    enabled: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TokenRecordResponse(BaseModel):
    created: datetime
    valid_until: datetime

    model_config = {"from_attributes": True}


class TokenIssuedResponse(TokenRecordResponse):
    account_id: str
    api_token: str


class EnableResponse(BaseModel):
    client: ClientResponse
    issued: TokenIssuedResponse | None = None


class RevokeResponse(BaseModel):
    account_id: str
    revoked: int
