import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from coctelera.core.config import Settings
from coctelera.core.security import constant_time_equals
from coctelera.db.session import get_db
from coctelera.services.access import AccessDecision, AccessValidator
from coctelera.services.workflow import RequestWorkflow

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

NOT_AUTHORIZED = "Not authorized"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_workflow(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> RequestWorkflow:
    return RequestWorkflow.from_session(db, settings, request.app.state.notifier)


def get_validator(db: Session = Depends(get_db)) -> AccessValidator:
    return AccessValidator(db)


def _require_token(
    validator: AccessValidator = Depends(get_validator),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AccessDecision:
    # StoreUnavailable propagates to its own handler (503), it is not a denial.
    decision = validator.authorize(credentials.credentials if credentials else None)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decision


Authorized = Annotated[AccessDecision, Depends(_require_token)]
RequireToken = Depends(_require_token)


def _require_admin(
    settings: Settings = Depends(get_settings),
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> None:
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administration is disabled")
    if not x_admin_key or not constant_time_equals(x_admin_key, settings.ADMIN_API_KEY):
        logger.warning("Rejected administrative request")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


RequireAdmin = Depends(_require_admin)
