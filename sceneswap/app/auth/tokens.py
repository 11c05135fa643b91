"""
Identity tokens.

Identity issuance and verification sit outside the batch core: the
orchestrator only sees the TokenVerifier protocol ("verify token ->
identity"). The bundled implementation signs short-lived HS256 JWTs
carrying the caller's e-mail address, delivered as a magic upload link.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import jwt

from sceneswap.app.core.errors import AuthError, InputError, SceneSwapError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class TokenVerifier(Protocol):
    def verify(self, token: str) -> str:
        """Return the identity carried by ``token`` or raise AuthError."""
        ...


def normalize_email(raw: Any) -> str:
    """Trim and lower-case an e-mail address, rejecting invalid input."""
    if raw is None or raw == "":
        raise InputError("Email required")

    email = str(raw).strip().lower()
    if not email:
        raise InputError("Email required")
    if not EMAIL_PATTERN.match(email):
        raise InputError("Invalid email")
    return email


class JwtTokenVerifier:
    """HS256 bearer tokens with a mandatory expiry and e-mail claim."""

    ALGORITHM = "HS256"

    def __init__(self, secret: str, *, leeway_seconds: int = 0) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._leeway = leeway_seconds

    def issue(self, email: str, *, ttl_seconds: int = 3600) -> str:
        now = datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            "email": email,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
        }
        return jwt.encode(claims, self._secret, algorithm=self.ALGORITHM)

    def verify(self, token: str) -> str:
        if not token:
            raise AuthError("No token")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.ALGORITHM],
                options={"require": ["exp"]},
                leeway=self._leeway,
            )
        except jwt.PyJWTError as exc:
            raise AuthError("Invalid or expired token") from exc

        email = claims.get("email")
        if not isinstance(email, str) or not email:
            raise AuthError("Invalid or expired token")
        return email


class MagicLinkIssuer:
    """Builds upload links of the form ``<base>/upload.html?token=...``."""

    def __init__(
        self,
        verifier: JwtTokenVerifier,
        *,
        public_base_url: str,
        ttl_seconds: int = 3600,
    ) -> None:
        self._verifier = verifier
        self._base_url = public_base_url.rstrip("/")
        self.ttl_seconds = ttl_seconds

    def issue(self, raw_email: Any) -> Dict[str, Any]:
        email = normalize_email(raw_email)
        token = self._verifier.issue(email, ttl_seconds=self.ttl_seconds)
        link = f"{self._base_url}/upload.html?token={quote(token, safe='')}"
        return {
            "ok": True,
            "email": email,
            "token": token,
            "link": link,
            "expires_in_seconds": self.ttl_seconds,
        }


def extract_credential(
    authorization: Optional[str],
    query_token: Optional[str],
) -> Optional[str]:
    """Bearer header first, then the ``token`` query parameter."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token:
            return token
    if query_token:
        return query_token.strip() or None
    return None


class UnconfiguredTokenVerifier:
    """Stands in when JWT_SECRET is absent: every token check is a 500."""

    def verify(self, token: str) -> str:
        raise SceneSwapError("Missing JWT_SECRET")
