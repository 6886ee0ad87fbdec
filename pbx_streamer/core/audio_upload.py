"""
Chunked audio upload to a call participant.

The upload is a single POST whose body is produced lazily from the byte
source: one chunk is pulled only after the transport accepted the previous
one, so the asset is never held in memory. Cancellation aborts the request
task and stops reading; transport failures are logged and reported in the
returned UploadOutcome. Nothing is retried.
"""

import asyncio
from typing import AsyncIterator

import aiohttp

from .cancellation import CancellationToken
from .models import Credential, UploadOutcome, UploadSession, UploadState
from ..errors import StreamError
from ..logging_config import get_logger

logger = get_logger(__name__)

# Response bodies are only logged; cap what gets read
_MAX_DIAGNOSTIC_BODY = 2048


class AudioUploadStreamer:

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self._session = session
        self.base_url = base_url.rstrip("/")

    def stream_url(self, extension: str, participant_id: str) -> str:
        return f"{self.base_url}/callcontrol/{extension}/participants/{participant_id}/stream"

    async def stream(
        self,
        extension: str,
        participant_id: str,
        byte_source: AsyncIterator[bytes],
        credential: Credential,
        cancellation: CancellationToken,
    ) -> UploadOutcome:
        """Upload `byte_source` to the participant; never raises for transport errors or cancellation."""
        session = UploadSession(
            extension=extension,
            participant_id=participant_id,
            byte_source=byte_source,
            credential=credential,
            cancellation=cancellation,
        )
        if cancellation.cancelled:
            await self._close_source(byte_source)
            logger.info("Audio upload cancelled before start", participant_id=participant_id)
            return UploadOutcome.from_session(session, UploadState.CANCELLED, error=cancellation.reason)

        upload = asyncio.create_task(self._upload(session))
        cancel_wait = asyncio.create_task(cancellation.wait())
        try:
            done, _ = await asyncio.wait({upload, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            upload.cancel()
            await asyncio.gather(upload, return_exceptions=True)
            raise
        finally:
            cancel_wait.cancel()

        if upload in done:
            return upload.result()

        upload.cancel()
        try:
            await upload
        except asyncio.CancelledError:
            pass
        else:
            # Finished in the same tick as the cancellation
            return upload.result()
        logger.warning(
            "Audio upload cancelled",
            participant_id=participant_id,
            reason=cancellation.reason,
            bytes_sent=session.bytes_sent,
        )
        return UploadOutcome.from_session(session, UploadState.CANCELLED, error=cancellation.reason)

    async def _upload(self, session: UploadSession) -> UploadOutcome:
        url = self.stream_url(session.extension, session.participant_id)
        headers = {
            "Content-Type": "application/octet-stream",
            "Authorization": session.credential.authorization,
        }
        logger.info("Starting audio upload", url=url, participant_id=session.participant_id)
        try:
            async with self._session.post(url, data=self._body(session), headers=headers, chunked=True) as response:
                session.http_status = response.status
                await self._log_response(session, response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if session.cancellation.cancelled:
                logger.warning(
                    "Audio upload aborted",
                    participant_id=session.participant_id,
                    reason=session.cancellation.reason,
                    bytes_sent=session.bytes_sent,
                )
                return UploadOutcome.from_session(session, UploadState.CANCELLED, error=session.cancellation.reason)
            error = e if isinstance(e, StreamError) else StreamError(f"{type(e).__name__}: {e}")
            logger.error(
                "Audio upload failed",
                participant_id=session.participant_id,
                error=str(error),
                bytes_sent=session.bytes_sent,
                exc_info=True,
            )
            return UploadOutcome.from_session(session, UploadState.FAILED, error=str(error))

        if not session.exhausted:
            logger.warning(
                "Server answered before the audio body was complete",
                participant_id=session.participant_id,
                bytes_sent=session.bytes_sent,
            )
        logger.info(
            "Audio streamed",
            participant_id=session.participant_id,
            bytes_sent=session.bytes_sent,
            chunks=session.chunks_sent,
        )
        return UploadOutcome.from_session(session, UploadState.COMPLETED)

    @staticmethod
    async def _log_response(session: UploadSession, response) -> None:
        """Diagnostics only; a failed read never changes the outcome."""
        try:
            body = await response.content.read(_MAX_DIAGNOSTIC_BODY)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(
                "Could not read audio upload response body",
                participant_id=session.participant_id,
                status=response.status,
                error=str(e),
            )
            return
        logger.info(
            "Audio upload response",
            participant_id=session.participant_id,
            status=response.status,
            body=body.decode("utf-8", errors="replace"),
        )

    async def _body(self, session: UploadSession) -> AsyncIterator[bytes]:
        iterator = session.byte_source.__aiter__()
        try:
            while True:
                # Raising (not returning) keeps the transport from sending the final chunk
                if session.cancellation.cancelled:
                    raise StreamError("Audio upload cancelled")
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    session.exhausted = True
                    return
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise StreamError(f"Reading audio source failed: {e}") from e
                if not chunk:
                    continue
                session.bytes_sent += len(chunk)
                session.chunks_sent += 1
                yield chunk
        finally:
            await self._close_source(iterator)

    @staticmethod
    async def _close_source(source) -> None:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
