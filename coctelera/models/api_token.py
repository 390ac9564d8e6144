from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coctelera.db.base import Base


class ApiToken(Base):
    """An issued bearer token. Only the SHA-256 digest of the secret is stored."""

    __tablename__ = "api_token"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("api_user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    client = relationship("ApiUser", back_populates="tokens")

    def is_valid_at(self, moment: datetime) -> bool:
        return self.created <= moment < self.valid_until

    def __repr__(self) -> str:
        return f"ApiToken(client_id={self.client_id!r}, valid_until={self.valid_until.isoformat()})"
