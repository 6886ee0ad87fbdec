"""
OAuth2 client-credentials token lifecycle for the PBX call-control API.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

import aiohttp
import jwt

from .core.models import Credential
from .errors import AuthError
from .logging_config import get_logger

logger = get_logger(__name__)

TOKEN_PATH = "/connect/token"


def decode_token_expiry(token: str) -> Optional[float]:
    """Return the JWT `exp` claim, or None when the token is not a decodable JWT.

    The signature is not verified: the client only needs to know when the
    server will stop accepting the token.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return float(exp)
    return None


class TokenManager:
    """Acquires, caches and refreshes the bearer credential.

    The credential is owned by this instance and shared by every component
    it is injected into. Refreshes are serialized so concurrent callers that
    discover an expired token wait for one exchange instead of each starting
    their own.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        client_id: str,
        client_secret: str,
        request_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self._session = session
        self.token_url = f"{base_url.rstrip('/')}{TOKEN_PATH}"
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self.acquisitions = 0

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def is_expired(self, credential: Optional[Credential], now: Optional[float] = None) -> bool:
        """True when the credential is absent, past its expiry, or its expiry cannot be determined."""
        if credential is None:
            return True
        if now is None:
            now = self._clock()
        expires_at = credential.expires_at
        if expires_at is None:
            expires_at = decode_token_expiry(credential.token)
        if expires_at is None:
            return True
        return expires_at <= now

    async def acquire(self) -> Credential:
        """Exchange the client credentials for a new bearer token."""
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
        }
        logger.info("Requesting access token", url=self.token_url)
        try:
            async with self._session.post(self.token_url, data=form, timeout=self._timeout) as response:
                if response.status >= 400:
                    reason = await response.text()
                    logger.error("Token endpoint rejected client credentials", status=response.status, reason=reason)
                    raise AuthError(f"Token endpoint returned {response.status}")
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Token request failed", error=str(e))
            raise AuthError(f"Unable to receive access token: {e}") from e
        except ValueError as e:
            raise AuthError(f"Token endpoint returned invalid JSON: {e}") from e

        credential = self._credential_from_payload(payload)
        self._credential = credential
        self.acquisitions += 1
        logger.info(
            "Access token acquired",
            expires_in=None if credential.expires_at is None else round(credential.expires_at - self._clock()),
        )
        return credential

    def _credential_from_payload(self, payload: Any) -> Credential:
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthError("Token response did not contain an access_token")
        token = str(payload["access_token"])
        now = self._clock()
        expires_at = decode_token_expiry(token)
        if expires_at is None:
            expires_at = self._expiry_from_expires_in(payload, now)
        return Credential(token=token, expires_at=expires_at, obtained_at=now)

    @staticmethod
    def _expiry_from_expires_in(payload: Dict[str, Any], now: float) -> Optional[float]:
        try:
            return now + float(payload["expires_in"])
        except (KeyError, TypeError, ValueError):
            return None

    async def get_valid_credential(self) -> Credential:
        """Return the current credential, acquiring a new one if it is missing or expired."""
        credential = self._credential
        if not self.is_expired(credential):
            return credential
        async with self._lock:
            # Another caller may have refreshed while we waited
            if not self.is_expired(self._credential):
                return self._credential
            logger.debug("Access token missing or expired; refreshing")
            return await self.acquire()

    async def refresh(self, stale: Optional[Credential] = None) -> Credential:
        """Re-acquire after the server rejected `stale`.

        If the current credential was already replaced by a concurrent
        refresh, that one is returned without another exchange.
        """
        async with self._lock:
            current = self._credential
            if current is not None and current is not stale and not self.is_expired(current):
                return current
            return await self.acquire()

    def invalidate(self) -> None:
        self._credential = None
