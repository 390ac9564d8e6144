import hashlib
import secrets
from datetime import timedelta

from jose import jwt, JWTError

from coctelera.core.clock import utcnow
from coctelera.core.config import settings

CONFIRMATION_PURPOSE = "confirm"


def generate_token(length: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


def create_confirmation_token(
    account_id: str,
    expires_delta: timedelta | None = None,
    secret_key: str | None = None,
    algorithm: str | None = None,
) -> str:
    expire = utcnow() + (expires_delta or settings.confirmation_validity)
    payload = {"sub": account_id, "purpose": CONFIRMATION_PURPOSE, "exp": expire}
    return jwt.encode(
        payload,
        secret_key or settings.JWT_SECRET_KEY,
        algorithm=algorithm or settings.JWT_ALGORITHM,
    )


def decode_confirmation_token(
    token: str,
    secret_key: str | None = None,
    algorithm: str | None = None,
) -> str:
    """Return the account id carried by a confirmation token.

    Raises ``JWTError`` for a bad signature, an expired token or a token
    minted for another purpose.
    """
    payload = jwt.decode(
        token,
        secret_key or settings.JWT_SECRET_KEY,
        algorithms=[algorithm or settings.JWT_ALGORITHM],
    )
    if payload.get("purpose") != CONFIRMATION_PURPOSE or not payload.get("sub"):
        raise JWTError("Not a confirmation token")
    return payload["sub"]


def constant_time_equals(a: str, b: str) -> bool:
    return secrets.compare_digest(a.encode(), b.encode())
