from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from jose import JWTError, jwt

from inventory_service.core.config import settings

ALGORITHM = "HS256"
STORE_ROLES = {"owner", "manager", "staff"}


class TokenValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ActorClaims:
    user_id: str
    store_id: str
    role: str
    jti: str


def create_token(
    subject: str,
    *,
    store_id: str,
    role: str,
    expires_delta: timedelta,
    token_type: str = "access",
    jti: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "store_id": store_id,
        "role": role,
        "type": token_type,
        "jti": jti or str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, *, expected_type: str | None = None) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise TokenValidationError("Invalid token subject")

    token_type = payload.get("type")
    if expected_type and token_type != expected_type:
        raise TokenValidationError("Invalid token type")

    if not payload.get("jti"):
        raise TokenValidationError("Invalid token id")

    return payload


def get_actor_claims(token: str) -> ActorClaims:
    payload = decode_token(token, expected_type="access")

    store_id = payload.get("store_id")
    if not store_id:
        raise TokenValidationError("Token is not scoped to a store")

    role = str(payload.get("role") or "staff").strip().lower()
    if role not in STORE_ROLES:
        raise TokenValidationError("Invalid token role")

    return ActorClaims(
        user_id=str(payload["sub"]),
        store_id=str(store_id),
        role=role,
        jti=str(payload["jti"]),
    )


def create_access_token(user_id: str, *, store_id: str, role: str = "manager") -> str:
    return create_token(
        subject=user_id,
        store_id=store_id,
        role=role,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )
