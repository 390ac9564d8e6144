"""Token generation and the token store."""

import enum
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coctelera.core.clock import Clock, utcnow
from coctelera.core.config import Settings
from coctelera.core.exceptions import (
    AccountNotFound,
    IssuanceFailed,
    TokenCollision,
    TokenNotFound,
)
from coctelera.core.security import generate_token, hash_token
from coctelera.db.session import store_errors
from coctelera.models.api_token import ApiToken
from coctelera.models.api_user import ApiUser

logger = logging.getLogger(__name__)


class IssueOutcome(str, enum.Enum):
    issued = "issued"
    account_not_validated = "account_not_validated"
    account_not_enabled = "account_not_enabled"


@dataclass(frozen=True)
class IssuanceResult:
    outcome: IssueOutcome
    token: str | None = None
    record: ApiToken | None = None

    @property
    def issued(self) -> bool:
        return self.outcome == IssueOutcome.issued


class TokenGenerator:
    def __init__(self, length: int, alphabet: str, max_attempts: int = 3):
        self.length = length
        self.alphabet = alphabet
        self.max_attempts = max_attempts

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenGenerator":
        return cls(settings.TOKEN_LENGTH, settings.TOKEN_ALPHABET, settings.TOKEN_ISSUE_MAX_RETRIES)

    def generate(self) -> str:
        return generate_token(self.length, self.alphabet)

    def is_taken(self, db: Session, candidate: str) -> bool:
        return db.get(ApiToken, hash_token(candidate)) is not None

    def generate_unique(self, db: Session) -> str:
        """Generate a token whose digest is not in the store yet."""
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generate()
            if not self.is_taken(db, candidate):
                return candidate
            logger.warning("Generated token collided with an existing one (attempt %d)", attempt)
        raise IssuanceFailed(f"Could not generate a unique token after {self.max_attempts} attempts")


class TokenStore:
    def __init__(
        self,
        db: Session,
        generator: TokenGenerator,
        validity: timedelta,
        max_attempts: int = 3,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.generator = generator
        self.validity = validity
        self.max_attempts = max_attempts
        self.clock = clock

    def issue(self, account_id: str, validity: timedelta | None = None) -> IssuanceResult:
        """Issue a token for a validated account.

        The unique constraint on the digest is the serialization point: a
        concurrent insert of the same string makes the commit fail, and the
        whole transaction is retried with a fresh string. Collisions found by
        the existence check and by the insert share one attempt budget.
        """
        validity = validity or self.validity
        for attempt in range(1, self.max_attempts + 1):
            with store_errors(self.db):
                account = self.db.execute(
                    select(ApiUser)
                    .where(ApiUser.id == account_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if account is None:
                    self.db.rollback()
                    raise AccountNotFound(account_id)
                if not account.validated:
                    self.db.rollback()
                    logger.info("Issuance refused: account not validated", extra={"account_id": account_id})
                    return IssuanceResult(IssueOutcome.account_not_validated)

                raw_token = self.generator.generate()
                if self.generator.is_taken(self.db, raw_token):
                    logger.warning("Generated token already stored (attempt %d/%d)", attempt, self.max_attempts)
                    continue

                created = self.clock()
                record = ApiToken(
                    token_hash=hash_token(raw_token),
                    client_id=account_id,
                    created=created,
                    valid_until=created + validity,
                )
                try:
                    self._insert(record)
                except TokenCollision:
                    logger.warning("Token insert collided (attempt %d/%d)", attempt, self.max_attempts)
                    continue

            logger.info("Token issued, valid until %s", record.valid_until.isoformat(), extra={"account_id": account_id})
            return IssuanceResult(IssueOutcome.issued, token=raw_token, record=record)

        self.db.rollback()
        raise IssuanceFailed(f"Token issuance failed after {self.max_attempts} attempts")

    def _insert(self, record: ApiToken) -> None:
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # The owner may have been deleted between the check and the insert.
            if self.db.get(ApiUser, record.client_id, populate_existing=True) is None:
                raise AccountNotFound(record.client_id) from e
            raise TokenCollision("Token digest already stored") from e

    def lookup(self, raw_token: str) -> ApiToken:
        with store_errors(self.db):
            record = self.db.get(ApiToken, hash_token(raw_token), populate_existing=True)
        if record is None:
            raise TokenNotFound()
        return record

    def list_for(self, account_id: str) -> list[ApiToken]:
        with store_errors(self.db):
            return list(
                self.db.execute(
                    select(ApiToken).where(ApiToken.client_id == account_id).order_by(ApiToken.created.desc())
                ).scalars().all()
            )

    def revoke_all_for(self, account_id: str) -> int:
        """Expire every still-valid token of the account. Rows stay for audit."""
        now = self.clock()
        with store_errors(self.db):
            result = self.db.execute(
                update(ApiToken)
                .where(ApiToken.client_id == account_id, ApiToken.valid_until > now)
                .values(valid_until=now)
                .execution_options(synchronize_session="fetch")
            )
            self.db.commit()
        logger.info("Revoked %d token(s)", result.rowcount, extra={"account_id": account_id})
        return result.rowcount

    def purge_for(self, account_id: str) -> int:
        with store_errors(self.db):
            result = self.db.execute(
                delete(ApiToken)
                .where(ApiToken.client_id == account_id)
                .execution_options(synchronize_session="fetch")
            )
            self.db.commit()
        logger.info("Purged %d token row(s)", result.rowcount, extra={"account_id": account_id})
        return result.rowcount
