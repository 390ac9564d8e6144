"""
Token request workflow.

    requested --(requester confirms)--> validated --(admin enables)--> enabled
                                                                   <--(admin disables)--> disabled

The requester can only move an account to `validated`. Enabling is an
administrative action; the first time an account is enabled a token is
issued and sent to the requester. Re-enabling a disabled account makes its
existing unexpired tokens usable again without issuing new ones, and the
requester is told so.
"""

import logging
from datetime import timedelta
from urllib.parse import urlencode

from jose import JWTError
from pydantic import ValidationError
from sqlalchemy.orm import Session

from coctelera.core.clock import Clock, utcnow
from coctelera.core.config import Settings
from coctelera.core.exceptions import InvalidConfirmation, RequestValidationError
from coctelera.core.security import create_confirmation_token, decode_confirmation_token
from coctelera.models.api_user import AccountState, ApiUser
from coctelera.schemas.token import TokenRequest
from coctelera.services.accounts import AccountStore
from coctelera.services.notifications import EventKind, NotificationEvent, Notifier
from coctelera.services.tokens import IssuanceResult, IssueOutcome, TokenGenerator, TokenStore

logger = logging.getLogger(__name__)


class RequestWorkflow:
    def __init__(
        self,
        accounts: AccountStore,
        tokens: TokenStore,
        notifier: Notifier,
        settings: Settings,
    ):
        self.accounts = accounts
        self.tokens = tokens
        self.notifier = notifier
        self.settings = settings

    @classmethod
    def from_session(
        cls,
        db: Session,
        settings: Settings,
        notifier: Notifier,
        clock: Clock = utcnow,
    ) -> "RequestWorkflow":
        tokens = TokenStore(
            db,
            TokenGenerator.from_settings(settings),
            settings.token_validity,
            max_attempts=settings.TOKEN_ISSUE_MAX_RETRIES,
            clock=clock,
        )
        return cls(AccountStore(db), tokens, notifier, settings)

    # Requester side

    def submit_request(self, name: str | None, email: str, explanation: str) -> str:
        try:
            request = TokenRequest.model_validate({"name": name, "email": email, "explanation": explanation})
        except ValidationError as e:
            logger.debug("Rejected token request: %s", e.errors())
            raise RequestValidationError(
                "The data provided in the request is invalid",
                errors=e.errors(include_url=False, include_context=False),
            ) from e

        account_id = self.accounts.create(request.name, str(request.email), request.explanation)
        logger.info("API token requested", extra={"account_id": account_id})

        self._notify(
            NotificationEvent(
                account_id=account_id,
                email=str(request.email),
                kind=EventKind.requested,
                payload={"confirmation_link": self.confirmation_link(account_id)},
            )
        )
        return account_id

    def confirmation_token(self, account_id: str, expires_delta: timedelta | None = None) -> str:
        return create_confirmation_token(
            account_id,
            expires_delta=expires_delta or self.settings.confirmation_validity,
            secret_key=self.settings.JWT_SECRET_KEY,
            algorithm=self.settings.JWT_ALGORITHM,
        )

    def confirmation_link(self, account_id: str) -> str:
        query = urlencode({"token": self.confirmation_token(account_id)})
        return f"{self.settings.BASE_URL.rstrip('/')}/token/validate?{query}"

    def confirm(self, account_id: str) -> ApiUser:
        """Mark the request as confirmed. Confirming twice is a no-op."""
        account, previous = self.accounts.change_validated(account_id, True)
        if previous == AccountState.requested:
            self._notify(
                NotificationEvent(
                    account_id=account.id,
                    email=self.settings.ADMIN_EMAIL,
                    kind=EventKind.validated,
                    payload={"requester": account.email},
                )
            )
        return account

    def confirm_with_token(self, token: str) -> ApiUser:
        try:
            account_id = decode_confirmation_token(
                token,
                secret_key=self.settings.JWT_SECRET_KEY,
                algorithm=self.settings.JWT_ALGORITHM,
            )
        except JWTError as e:
            logger.info("Invalid confirmation link: %s", e)
            raise InvalidConfirmation("The confirmation link is invalid or has expired") from e
        return self.confirm(account_id)

    # Administrator side

    def enable(self, account_id: str) -> IssuanceResult | None:
        """Enable the account; issue its first token if it never had one.

        Every change to ``enabled`` notifies the requester. Only the first
        one carries a token; after a re-enable the existing unexpired tokens
        work again.
        """
        account, previous = self.accounts.change_enabled(account_id, True)
        if previous == AccountState.enabled:
            return None
        if self.tokens.list_for(account_id):
            logger.info("Account re-enabled, existing tokens restored", extra={"account_id": account_id})
            self._notify(
                NotificationEvent(
                    account_id=account.id,
                    email=account.email,
                    kind=EventKind.enabled,
                    payload={"tokens_restored": True},
                )
            )
            return None

        result = self.tokens.issue(account_id)
        if result.issued:
            self._notify(
                NotificationEvent(
                    account_id=account.id,
                    email=account.email,
                    kind=EventKind.enabled,
                    payload={
                        "api_token": result.token,
                        "valid_until": result.record.valid_until.isoformat(),
                    },
                )
            )
        return result

    def disable(self, account_id: str) -> ApiUser:
        return self.accounts.set_enabled(account_id, False)

    def issue_token(self, account_id: str) -> IssuanceResult:
        account = self.accounts.get(account_id)
        if not account.validated:
            return IssuanceResult(IssueOutcome.account_not_validated)
        if not account.enabled:
            logger.info("Issuance refused: account not enabled", extra={"account_id": account_id})
            return IssuanceResult(IssueOutcome.account_not_enabled)
        return self.tokens.issue(account_id)

    def revoke_tokens(self, account_id: str) -> int:
        self.accounts.get(account_id)
        return self.tokens.revoke_all_for(account_id)

    def delete_account(self, account_id: str) -> None:
        self.accounts.delete(account_id)

    def _notify(self, event: NotificationEvent) -> None:
        try:
            self.notifier.send(event)
        except Exception:
            # Delivery is external; the state change already committed.
            logger.exception(
                "Failed to deliver %s notification",
                event.kind.value,
                extra={"account_id": event.account_id, "event_kind": event.kind.value},
            )
