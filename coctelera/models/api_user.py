import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coctelera.core.clock import utcnow
from coctelera.db.base import Base


class AccountState(str, enum.Enum):
    requested = "requested"
    validated = "validated"
    enabled = "enabled"
    disabled = "disabled"


# Every state except `requested` implies the requester confirmed the request.
VALIDATED_STATES = frozenset({AccountState.validated, AccountState.enabled, AccountState.disabled})


class ApiUser(Base):
    __tablename__ = "api_user"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    explanation: Mapped[str] = mapped_column(String(400), nullable=False)
    state: Mapped[AccountState] = mapped_column(
        Enum(
            AccountState,
            name="account_state",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
        default=AccountState.requested,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tokens = relationship(
        "ApiToken",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def validated(self) -> bool:
        return self.state in VALIDATED_STATES

    @property
    def enabled(self) -> bool:
        return self.state == AccountState.enabled

    def __repr__(self) -> str:
        return f"ApiUser(id={self.id!r}, state={self.state.value!r})"
