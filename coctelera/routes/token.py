import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse

from coctelera.core.dependencies import Authorized, get_workflow
from coctelera.schemas.token import (
    ConfirmationResponse,
    TokenInfo,
    TokenRequest,
    TokenRequestCreated,
)
from coctelera.services.workflow import RequestWorkflow

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

router = APIRouter(prefix="/token", tags=["token"])


@router.get("/request", include_in_schema=False)
def token_request_form():
    return FileResponse(str(TEMPLATES_DIR / "token_request.html"), media_type="text/html")


@router.post("/request", response_model=TokenRequestCreated, status_code=201)
def request_token(body: TokenRequest, request: Request, workflow: RequestWorkflow = Depends(get_workflow)):
    account_id = workflow.submit_request(body.name, str(body.email), body.explanation)
    logger.info(
        "Token request accepted",
        extra={"account_id": account_id, "client_ip": request.client.host if request.client else None},
    )
    return TokenRequestCreated(account_id=account_id)


@router.get("/validate", response_model=ConfirmationResponse)
def validate_request(
    token: str = Query(..., min_length=1, description="Token from the confirmation email"),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    account = workflow.confirm_with_token(token)
    return ConfirmationResponse(account_id=account.id, state=account.state.value)


@router.get("/me", response_model=TokenInfo)
def token_me(decision: Authorized):
    return TokenInfo(account_id=decision.account_id, valid_until=decision.valid_until)
