"""
ShiftCount Security Utilities

JWT handling for the actor identity attached to every call.
Token issuance for real users belongs to the identity provider; the
helpers here only sign local/dev tokens and read `sub` + `role` claims.
"""

from datetime import datetime, timedelta

from jose import JWTError, jwt

from core.config import get_settings


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally signed access token."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None


def actor_from_claims(payload: dict) -> dict | None:
    """Extract the (actor_id, role) pair from decoded token claims."""
    actor_id = payload.get("sub")
    role = payload.get("role")
    if not actor_id or not role:
        return None
    return {"actor_id": str(actor_id), "role": str(role).upper(), "name": payload.get("name")}
