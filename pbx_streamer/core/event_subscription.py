"""
Call-control event subscription with automatic reconnect.

One coroutine drives the connection state machine:

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> DISCONNECTED -> ...

Messages of a connection are handled one at a time, in arrival order, so
the per-connection status history stays consistent. Uploads started from
an event run as separate tasks and never block the next message.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from .cancellation import CancellationToken
from .models import (
    EVENT_REMOVE,
    EVENT_UPSERT,
    STATUS_CONNECTED,
    EventEnvelope,
    ParticipantRef,
)
from .audio_upload import AudioUploadStreamer
from ..call_control import ParticipantQueryService
from ..errors import AuthError, EventParseError, ParticipantLookupError, SubscriptionFailedError
from ..logging_config import get_logger, set_correlation_id
from ..media import WavFileMediaSource
from ..token_manager import TokenManager

logger = get_logger(__name__)

EVENT_FEED_PATH = "/callcontrol/ws"


class SubscriptionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STOPPED = "stopped"


@dataclass
class ConnectionContext:
    """State that lives exactly as long as one websocket connection."""
    number: int
    status_history: Dict[str, str] = field(default_factory=dict)
    messages: int = 0


def event_feed_url(base_url: str) -> str:
    base_url = base_url.rstrip("/")
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url}{EVENT_FEED_PATH}"


class EventSubscriptionLoop:

    def __init__(
        self,
        base_url: str,
        token_manager: TokenManager,
        participants: ParticipantQueryService,
        streamer: AudioUploadStreamer,
        media: WavFileMediaSource,
        shutdown: CancellationToken,
        reconnect_delay: float = 5.0,
        max_consecutive_failures: Optional[int] = None,
        subscribe_path: str = "/callcontrol",
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.ws_url = event_feed_url(base_url)
        self._tokens = token_manager
        self._participants = participants
        self._streamer = streamer
        self._media = media
        self._shutdown = shutdown
        self.reconnect_delay = reconnect_delay
        self.max_consecutive_failures = max_consecutive_failures
        self.subscribe_path = subscribe_path
        self._connect = connect

        self.state = SubscriptionState.DISCONNECTED
        self.subscribed = asyncio.Event()
        self.connections = 0
        self.consecutive_failures = 0
        self.context: Optional[ConnectionContext] = None
        self._websocket = None
        self._stop_requested = asyncio.Event()
        self._uploads: Set[asyncio.Task] = set()

    @property
    def active_uploads(self) -> int:
        return len(self._uploads)

    def _set_state(self, state: SubscriptionState) -> None:
        if state is not self.state:
            logger.debug("Event subscription state change", previous=self.state.value, state=state.value)
        self.state = state
        if state is SubscriptionState.SUBSCRIBED:
            self.subscribed.set()
        else:
            self.subscribed.clear()

    async def run(self) -> None:
        """Keep the subscription alive until stop() is called.

        Raises:
            SubscriptionFailedError: max_consecutive_failures is set and was reached.
        """
        logger.info("Starting call-control event subscription", url=self.ws_url)
        while not self._stop_requested.is_set():
            succeeded = await self._connect_and_listen()
            # History belongs to the connection that populated it
            self.context = None
            self._websocket = None
            if self._stop_requested.is_set():
                break
            self._set_state(SubscriptionState.DISCONNECTED)

            if succeeded:
                self.consecutive_failures = 0
            else:
                self.consecutive_failures += 1
                if self.max_consecutive_failures and self.consecutive_failures >= self.max_consecutive_failures:
                    self._set_state(SubscriptionState.STOPPED)
                    logger.error("Event feed giving up after consecutive failures", failures=self.consecutive_failures)
                    raise SubscriptionFailedError(
                        f"Event feed failed {self.consecutive_failures} consecutive times"
                    )

            logger.warning("Event feed closed. Reconnecting...", delay_sec=self.reconnect_delay,
                           consecutive_failures=self.consecutive_failures)
            await self._wait_before_reconnect()

        self._set_state(SubscriptionState.STOPPED)
        logger.info("Event subscription stopped")

    async def _wait_before_reconnect(self) -> None:
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            pass

    async def _connect_and_listen(self) -> bool:
        """Run one connection to completion; returns True if it reached SUBSCRIBED."""
        self._set_state(SubscriptionState.CONNECTING)
        try:
            credential = await self._tokens.get_valid_credential()
        except AuthError as e:
            logger.error("Cannot connect event feed without a credential", error=str(e))
            return False

        subscribed = False
        try:
            async with self._connect(self.ws_url, additional_headers={"Authorization": credential.authorization}) as ws:
                self._websocket = ws
                self.connections += 1
                self.context = ConnectionContext(number=self.connections)
                await ws.send(json.dumps({"action": "subscribe", "path": self.subscribe_path}))
                subscribed = True
                self._set_state(SubscriptionState.SUBSCRIBED)
                logger.info("Subscribed to call-control events", path=self.subscribe_path, connection=self.connections)

                async for message in ws:
                    try:
                        await self.handle_message(message, self.context)
                    except Exception:
                        logger.error("Error handling call-control event; continuing", exc_info=True)
        except InvalidStatus as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            if status == 401:
                logger.warning("Event feed rejected credential; a new token will be requested")
                self._tokens.invalidate()
            else:
                logger.error("Event feed handshake rejected", status=status)
        except ConnectionClosed as e:
            logger.warning("Event feed connection closed", code=getattr(e.rcvd, "code", None))
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            logger.error("Event feed connection error", error=str(e))
        return subscribed

    async def handle_message(self, message: Any, context: ConnectionContext) -> None:
        """Process one inbound message; failures drop the message, never the connection."""
        context.messages += 1
        set_correlation_id()
        try:
            envelope = EventEnvelope.parse(message)
        except EventParseError as e:
            logger.warning("Discarding malformed event message", error=str(e))
            return

        ref = envelope.participant_ref()
        if ref is None:
            logger.debug("Ignoring non-participant event", event_type=envelope.event_type, entity=envelope.entity)
            return

        if envelope.event_type == EVENT_REMOVE:
            context.status_history.pop(ref.participant_id, None)
            logger.info("Participant removed", participant_id=ref.participant_id)
            return
        if envelope.event_type != EVENT_UPSERT:
            logger.debug("Ignoring participant event", event_type=envelope.event_type, entity=envelope.entity)
            return

        logger.info("Detected participant change", participant_id=ref.participant_id, entity=ref.entity)
        try:
            snapshot = await self._participants.get_snapshot(ref)
        except ParticipantLookupError as e:
            logger.warning("Dropping event; participant lookup failed", participant_id=ref.participant_id, error=str(e))
            return

        previous = context.status_history.get(ref.participant_id)
        context.status_history[ref.participant_id] = snapshot.status
        logger.info(
            "Participant status",
            participant_id=ref.participant_id,
            status=snapshot.status,
            previous_status=previous,
            caller_name=snapshot.caller_name,
            party_dn=snapshot.party_dn,
        )

        if snapshot.status != STATUS_CONNECTED:
            return
        if previous == STATUS_CONNECTED:
            logger.debug("Participant already connected; no new stream", participant_id=ref.participant_id)
            return
        await self._start_upload(ref)

    async def _start_upload(self, ref: ParticipantRef) -> None:
        if not self._media.exists():
            logger.error("Audio file not found; skipping stream", path=self._media.path, participant_id=ref.participant_id)
            return
        try:
            credential = await self._tokens.get_valid_credential()
        except AuthError as e:
            logger.error("Cannot stream audio without a credential", participant_id=ref.participant_id, error=str(e))
            return

        extension = ref.extension or self._participants.extension
        token = self._shutdown.create_child()
        logger.info("Participant is connected. Streaming audio", participant_id=ref.participant_id, extension=extension)
        task = asyncio.create_task(
            self._streamer.stream(extension, ref.participant_id, self._media.iter_chunks(), credential, token)
        )
        self._uploads.add(task)

        def _done(t: asyncio.Task) -> None:
            self._uploads.discard(t)
            token.release()
            if not t.cancelled() and t.exception() is not None:
                logger.error("Audio upload task crashed", participant_id=ref.participant_id,
                             error=str(t.exception()))

        task.add_done_callback(_done)

    async def wait_for_uploads(self) -> list:
        """Wait for every in-flight upload; returns their outcomes (or exceptions)."""
        if not self._uploads:
            return []
        return await asyncio.gather(*list(self._uploads), return_exceptions=True)

    async def stop(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._stop_requested.set()
        ws = self._websocket
        if ws is not None:
            await ws.close()
