"""Persistence of API client accounts and their state transitions."""

import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coctelera.core.exceptions import AccountNotFound, DuplicateEmail, IllegalStateTransition
from coctelera.db.session import store_errors
from coctelera.models.api_user import ApiUser, AccountState

logger = logging.getLogger(__name__)

# (current state, requested flag value) -> next state. None marks an illegal move.
_VALIDATE_TRANSITIONS: dict[tuple[AccountState, bool], AccountState | None] = {
    (AccountState.requested, True): AccountState.validated,
    (AccountState.requested, False): AccountState.requested,
    (AccountState.validated, True): AccountState.validated,
    (AccountState.validated, False): AccountState.requested,
    (AccountState.enabled, True): AccountState.enabled,
    (AccountState.enabled, False): None,
    (AccountState.disabled, True): AccountState.disabled,
    (AccountState.disabled, False): AccountState.requested,
}

_ENABLE_TRANSITIONS: dict[tuple[AccountState, bool], AccountState | None] = {
    (AccountState.requested, True): None,
    (AccountState.requested, False): None,
    (AccountState.validated, True): AccountState.enabled,
    (AccountState.validated, False): AccountState.disabled,
    (AccountState.enabled, True): AccountState.enabled,
    (AccountState.enabled, False): AccountState.disabled,
    (AccountState.disabled, True): AccountState.enabled,
    (AccountState.disabled, False): AccountState.disabled,
}


class AccountStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, name: str | None, email: str, explanation: str) -> str:
        with store_errors(self.db):
            account = ApiUser(name=name, email=email, explanation=explanation, state=AccountState.requested)
            self.db.add(account)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise DuplicateEmail(f"A request for {email} already exists") from e
            logger.info("Account created", extra={"account_id": account.id})
            return account.id

    def get(self, account_id: str) -> ApiUser:
        with store_errors(self.db):
            account = self.db.get(ApiUser, account_id, populate_existing=True)
            if account is None:
                raise AccountNotFound(account_id)
            return account

    def get_by_email(self, email: str) -> ApiUser | None:
        with store_errors(self.db):
            return self.db.execute(select(ApiUser).where(ApiUser.email == email)).scalar_one_or_none()

    def list(self, state: AccountState | None = None, offset: int = 0, limit: int = 50) -> tuple[list[ApiUser], int]:
        query = select(ApiUser)
        count_query = select(func.count(ApiUser.id))
        if state is not None:
            query = query.where(ApiUser.state == state)
            count_query = count_query.where(ApiUser.state == state)

        with store_errors(self.db):
            total = self.db.execute(count_query).scalar_one()
            items = self.db.execute(
                query.order_by(ApiUser.created_at.desc()).offset(offset).limit(limit)
            ).scalars().all()
        return list(items), total

    def set_validated(self, account_id: str, value: bool) -> ApiUser:
        return self.change_validated(account_id, value)[0]

    def set_enabled(self, account_id: str, value: bool) -> ApiUser:
        return self.change_enabled(account_id, value)[0]

    def change_validated(self, account_id: str, value: bool) -> tuple[ApiUser, AccountState]:
        """Like ``set_validated`` but also returns the state read under the row lock."""
        return self._transition(account_id, value, _VALIDATE_TRANSITIONS, "validated" if value else "requested")

    def change_enabled(self, account_id: str, value: bool) -> tuple[ApiUser, AccountState]:
        return self._transition(account_id, value, _ENABLE_TRANSITIONS, "enabled" if value else "disabled")

    def delete(self, account_id: str) -> None:
        """Delete the account. Its tokens go in the same transaction through the FK cascade."""
        with store_errors(self.db):
            account = self._locked(account_id)
            self.db.delete(account)
            self.db.commit()
        logger.info("Account deleted", extra={"account_id": account_id})

    def _locked(self, account_id: str) -> ApiUser:
        account = self.db.execute(
            select(ApiUser)
            .where(ApiUser.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            self.db.rollback()
            raise AccountNotFound(account_id)
        return account

    def _transition(self, account_id, value, table, target_label) -> tuple[ApiUser, AccountState]:
        with store_errors(self.db):
            account = self._locked(account_id)
            current = account.state
            nxt = table[(current, value)]
            if nxt is None:
                self.db.rollback()
                raise IllegalStateTransition(account_id, current.value, target_label)
            if nxt != current:
                account.state = nxt
                self.db.commit()
                logger.info(
                    "Account state %s -> %s", current.value, nxt.value, extra={"account_id": account_id}
                )
            else:
                self.db.rollback()
            return account, current
