"""
CSRF state for OAuth2 authorization-code flows.

The random state travels through the provider's redirect; a signed, short-lived copy is
kept by the client in an httpOnly cookie and both must match on callback.
"""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt

from utils.exceptions import ConfigurationError, InvalidState

STATE_COOKIE_NAME = "oauth_state"
_ALGORITHM = "HS256"


class StateSigner:
    """Issues and verifies the signed state cookie value"""

    def __init__(self, secret: Optional[str], ttl_seconds: int = 600):
        self._secret = secret
        self.ttl_seconds = ttl_seconds

    def _key(self) -> str:
        if not self._secret:
            raise ConfigurationError("STATE_SECRET or ENCRYPTION_KEY must be set to sign OAuth state")
        return self._secret

    def issue(self, user_id: str, provider: str) -> Tuple[str, str]:
        """Return (state, cookie value)"""
        state = secrets.token_urlsafe(32)
        payload = {
            "state": state,
            "sub": user_id,
            "provider": provider,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds),
        }
        return state, jwt.encode(payload, self._key(), algorithm=_ALGORITHM)

    def verify(self, returned_state: Optional[str], cookie: Optional[str], user_id: str, provider: str) -> None:
        """Raise InvalidState unless the callback state matches the caller's live cookie exactly"""
        if not returned_state or not cookie:
            raise InvalidState("Missing OAuth state", {"provider": provider})

        try:
            payload = jwt.decode(cookie, self._key(), algorithms=[_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise InvalidState("OAuth state expired", {"provider": provider})
        except jwt.InvalidTokenError:
            raise InvalidState("OAuth state cookie is invalid", {"provider": provider})

        if payload.get("sub") != user_id or payload.get("provider") != provider:
            raise InvalidState("OAuth state was issued for another session", {"provider": provider})
        if not hmac.compare_digest(str(payload.get("state", "")).encode(), returned_state.encode()):
            raise InvalidState("OAuth state mismatch", {"provider": provider})
