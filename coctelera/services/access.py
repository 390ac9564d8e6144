import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from coctelera.core.clock import Clock, utcnow
from coctelera.core.security import hash_token
from coctelera.db.session import store_errors
from coctelera.models.api_token import ApiToken
from coctelera.models.api_user import ApiUser

logger = logging.getLogger(__name__)


class DenyReason(str, enum.Enum):
    unknown = "unknown"
    expired = "expired"
    disabled = "disabled"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    account_id: str | None = None
    reason: DenyReason | None = None
    valid_until: datetime | None = None

    @classmethod
    def allow(cls, account_id: str, valid_until: datetime | None = None) -> "AccessDecision":
        return cls(allowed=True, account_id=account_id, valid_until=valid_until)

    @classmethod
    def deny(cls, reason: DenyReason, account_id: str | None = None) -> "AccessDecision":
        return cls(allowed=False, account_id=account_id, reason=reason)


class AccessValidator:
    """Per-request gate for bearer tokens.

    Every call reads the current token and owner rows; nothing is cached
    between calls, so disabling an account takes effect on the next check.
    Store failures raise ``StoreUnavailable`` and are never turned into a
    denial.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def authorize(self, presented_token: str | None) -> AccessDecision:
        if not presented_token:
            return self._deny(DenyReason.unknown)

        with store_errors(self.db):
            token = self.db.get(ApiToken, hash_token(presented_token), populate_existing=True)
            if token is None:
                return self._deny(DenyReason.unknown)

            now = self.clock()
            if not token.is_valid_at(now):
                return self._deny(DenyReason.expired, token.client_id)

            owner = self.db.get(ApiUser, token.client_id, populate_existing=True)
            if owner is None:
                return self._deny(DenyReason.unknown, token.client_id)
            if not owner.enabled:
                return self._deny(DenyReason.disabled, token.client_id)

        return AccessDecision.allow(owner.id, token.valid_until)

    def _deny(self, reason: DenyReason, account_id: str | None = None) -> AccessDecision:
        logger.info("Access denied: %s", reason.value, extra={"reason": reason.value, "account_id": account_id})
        return AccessDecision.deny(reason, account_id)
