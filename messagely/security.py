"""Signed identity credentials for the messagely API.

Credentials are HS256 JWTs (PyJWT) carrying the ``username`` plus the usual
``iat``/``exp`` claims. They are stateless: nothing is stored server side.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthenticationError

ALGORITHM = "HS256"


class TokenIssuer:
    """Issue and verify credentials identifying a user."""

    def __init__(self, secret: str, *, ttl: timedelta = timedelta(hours=24)) -> None:
        if not secret:
            raise ValueError("A signing secret must be provided")
        self._secret = secret
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, username: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "username": username,
            "iat": now,
            "exp": now + self._ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> str:
        """Return the username carried by ``token``.

        Raises :class:`AuthenticationError` if the token is expired, malformed
        or signed with another key.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError("Credential has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationError("Invalid credential") from exc

        username = payload.get("username")
        if not isinstance(username, str) or not username:
            raise AuthenticationError("Invalid credential")
        return username


class BearerAuth:
    """FastAPI dependency resolving the bearer credential to a username."""

    def __init__(self, issuer: TokenIssuer):
        self._issuer = issuer
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> str:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise AuthenticationError("Missing bearer token")
        return self._issuer.verify(credentials.credentials)


__all__ = ["ALGORITHM", "BearerAuth", "TokenIssuer"]
