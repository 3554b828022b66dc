"""Resolve the signed-in member from a hosted-auth session token."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from fastapi import HTTPException, status
from jose import JWTError, jwt

from .app.billing.models import MemberAccount

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class MemberLookup(Protocol):
    def get_user_by_auth_id(self, auth_id: str) -> Optional[MemberAccount]:
        ...


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SupabaseAuthenticator:
    """Verifies Supabase access tokens and loads the matching ``users`` row."""

    def __init__(self, *, jwt_secret: str, audience: str, members: MemberLookup) -> None:
        self._jwt_secret = jwt_secret
        self._audience = audience
        self._members = members

    def resolve(self, token: str) -> Optional[MemberAccount]:
        try:
            payload = jwt.decode(token, self._jwt_secret, algorithms=[JWT_ALGORITHM], audience=self._audience)
        except JWTError as exc:
            logger.info("Rejected session token: %s", exc)
            return None

        subject = payload.get("sub")
        if not subject:
            return None
        return self._members.get_user_by_auth_id(str(subject))

    def __call__(self, authorization: Optional[str] = None) -> MemberAccount:
        token = _bearer_token(authorization)
        if token is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

        member = self.resolve(token)
        if member is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        return member


__all__ = ["JWT_ALGORITHM", "MemberLookup", "SupabaseAuthenticator"]
