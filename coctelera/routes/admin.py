import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from coctelera.core.dependencies import RequireAdmin, get_workflow
from coctelera.models.api_user import AccountState
from coctelera.schemas.client import (
    ClientResponse,
    EnableResponse,
    RevokeResponse,
    TokenIssuedResponse,
    TokenRecordResponse,
)
from coctelera.schemas.pagination import PaginationParams, PaginatedResponse
from coctelera.services.tokens import IssuanceResult
from coctelera.services.workflow import RequestWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/clients", tags=["admin"], dependencies=[RequireAdmin])


def _issued(account_id: str, result: IssuanceResult) -> TokenIssuedResponse:
    return TokenIssuedResponse(
        account_id=account_id,
        api_token=result.token,
        created=result.record.created,
        valid_until=result.record.valid_until,
    )


@router.get("", response_model=PaginatedResponse[ClientResponse])
def list_clients(
    workflow: RequestWorkflow = Depends(get_workflow),
    pagination: PaginationParams = Depends(),
    state: Optional[AccountState] = Query(None, description="Filter by account state"),
):
    items, total = workflow.accounts.list(state=state, offset=pagination.offset, limit=pagination.limit)
    return PaginatedResponse[ClientResponse].page(
        [ClientResponse.model_validate(c) for c in items], total, pagination
    )


@router.get("/{account_id}", response_model=ClientResponse)
def get_client(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    return workflow.accounts.get(account_id)


@router.get("/{account_id}/tokens", response_model=list[TokenRecordResponse])
def list_client_tokens(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    workflow.accounts.get(account_id)
    return workflow.tokens.list_for(account_id)


@router.post("/{account_id}/validate", response_model=ClientResponse)
def validate_client(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    return workflow.confirm(account_id)


@router.post("/{account_id}/enable", response_model=EnableResponse)
def enable_client(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    result = workflow.enable(account_id)
    client = workflow.accounts.get(account_id)
    issued = _issued(account_id, result) if result is not None and result.issued else None
    return EnableResponse(client=ClientResponse.model_validate(client), issued=issued)


@router.post("/{account_id}/disable", response_model=ClientResponse)
def disable_client(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    return workflow.disable(account_id)


@router.post("/{account_id}/tokens", response_model=TokenIssuedResponse, status_code=201)
def issue_client_token(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    result = workflow.issue_token(account_id)
    if not result.issued:
        raise HTTPException(status_code=409, detail=result.outcome.value)
    return _issued(account_id, result)


@router.delete("/{account_id}/tokens", response_model=RevokeResponse)
def revoke_client_tokens(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    revoked = workflow.revoke_tokens(account_id)
    return RevokeResponse(account_id=account_id, revoked=revoked)


@router.delete("/{account_id}", status_code=204)
def delete_client(account_id: str, workflow: RequestWorkflow = Depends(get_workflow)):
    workflow.delete_account(account_id)
