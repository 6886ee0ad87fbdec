"""
Authenticated access to the PBX Call Control REST API.

AuthenticatedRequestExecutor attaches the bearer credential to every request
and retries exactly once, with a refreshed credential, when the server
answers 401. ParticipantQueryService builds on it to resolve participant
state and to originate calls.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .core.models import ParticipantRef, ParticipantSnapshot
from .errors import AuthError, ParticipantLookupError, RequestError
from .logging_config import get_logger
from .token_manager import TokenManager

logger = get_logger(__name__)


class _Unauthorized(Exception):
    """Internal signal: the server rejected the credential (HTTP 401)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthenticatedRequestExecutor:
    """Issues call-control requests with transparent refresh-and-retry."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        token_manager: TokenManager,
        request_timeout: float = 10.0,
    ):
        self._session = session
        self.base_url = base_url.rstrip("/")
        self._tokens = token_manager
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    def url_for(self, resource: str) -> str:
        return f"{self.base_url}/{resource.lstrip('/')}"

    async def execute(
        self,
        method: str,
        resource: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request and return its decoded JSON body.

        Raises:
            AuthError: credential could not be obtained, or the server
                rejected two consecutive credentials.
            RequestError: any other HTTP or network failure (never retried).
        """
        url = self.url_for(resource)
        credential = await self._tokens.get_valid_credential()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception_type(_Unauthorized),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info("Call-control request unauthorized; refreshing token and retrying once",
                                    method=method, url=url)
                        credential = await self._tokens.refresh(stale=credential)
                    return await self._send(method, url, credential.authorization, json)
        except _Unauthorized as e:
            logger.error("Call-control request unauthorized after token refresh", method=method, url=url, reason=e.reason)
            raise AuthError(f"{method} {url} rejected after token refresh") from e

    async def _send(self, method: str, url: str, authorization: str, json: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        headers = {"Authorization": authorization}
        try:
            async with self._session.request(method, url, json=json, headers=headers, timeout=self._timeout) as response:
                if response.status == 401:
                    raise _Unauthorized(await response.text())
                if response.status >= 400:
                    reason = await response.text()
                    logger.error("Call-control command failed", method=method, url=url, status=response.status, reason=reason)
                    raise RequestError(f"{method} {url} returned {response.status}", status=response.status, reason=reason)
                if response.status == 204:
                    return {}
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Call-control HTTP request failed", method=method, url=url, error=str(e))
            raise RequestError(f"{method} {url} failed: {e}", reason=str(e)) from e
        except ValueError as e:
            raise RequestError(f"{method} {url} returned invalid JSON: {e}", reason=str(e)) from e
        return body if isinstance(body, dict) else {"result": body}


class ParticipantQueryService:
    """Reads participant state and originates calls for one extension."""

    def __init__(self, executor: AuthenticatedRequestExecutor, extension: str):
        self._executor = executor
        self.extension = extension

    def participant_ref(self, participant_id: str, extension: Optional[str] = None) -> ParticipantRef:
        extension = extension or self.extension
        return ParticipantRef(
            participant_id=str(participant_id),
            extension=extension,
            entity=f"/callcontrol/{extension}/participants/{participant_id}",
        )

    async def get_snapshot(self, ref: ParticipantRef) -> ParticipantSnapshot:
        """Fetch the current participant state.

        Raises:
            ParticipantLookupError: the request failed or returned no status.
        """
        try:
            payload = await self._executor.execute("GET", ref.entity)
        except (RequestError, AuthError) as e:
            raise ParticipantLookupError(f"Participant {ref.participant_id} lookup failed: {e}") from e
        if not payload.get("status"):
            raise ParticipantLookupError(f"Participant {ref.participant_id} has no status")
        return ParticipantSnapshot.from_payload(payload, ref)

    async def get_status(self, participant_id: str, extension: Optional[str] = None) -> str:
        snapshot = await self.get_snapshot(self.participant_ref(participant_id, extension))
        return snapshot.status

    async def make_call(self, destination: str, source: Optional[str] = None) -> Optional[str]:
        """Originate a call from `source` (default: configured extension); returns the participant id."""
        source = source or self.extension
        logger.info("Making call", source=source, destination=destination)
        payload = await self._executor.execute("POST", f"callcontrol/{source}/makecall", json={"destination": destination})
        result = payload.get("result")
        participant_id = None
        if isinstance(result, dict):
            participant_id = result.get("id")
        participant_id = participant_id or payload.get("participantId") or payload.get("id")
        logger.info("Call initiated", source=source, destination=destination, participant_id=participant_id)
        return None if participant_id is None else str(participant_id)
