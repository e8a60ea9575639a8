from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt

from assist_chat.config import Settings


class AuthenticationError(Exception):
    pass


@dataclass
class Identity:
    user_id: str
    role: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc


def identity_from_token(token: Optional[str], settings: Settings) -> Identity:
    if not token:
        raise AuthenticationError("Missing token")
    payload = decode_access_token(token, settings)
    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return Identity(user_id=str(user_id), role=payload.get("role"), claims=payload)


def bearer_from_header(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
