"""
Startup sequencing and process entry point.

Startup order matters: the media asset is checked before any network
activity, and the initial token must be acquired before the event feed is
opened. Either failure ends the process with a non-zero status.
"""

import asyncio
import logging
import signal
import sys
from typing import Callable, Optional

import aiohttp
import websockets
import yaml
from pydantic import ValidationError

from .call_control import AuthenticatedRequestExecutor, ParticipantQueryService
from .config import AppConfig, load_config, validate_production_config
from .core.audio_upload import AudioUploadStreamer
from .core.cancellation import CancellationToken
from .core.event_subscription import EventSubscriptionLoop
from .errors import AuthError, MediaUnavailableError, RequestError, SubscriptionFailedError
from .logging_config import get_logger, configure_logging
from .media import WavFileMediaSource
from .token_manager import TokenManager

logger = get_logger(__name__)


class StreamerEngine:
    """Wires the call-control components together for one process lifetime."""

    def __init__(
        self,
        config: AppConfig,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
        connect: Optional[Callable] = None,
    ):
        self.config = config
        self.media = WavFileMediaSource(config.media.audio_path, config.media.chunk_size)
        self.shutdown = CancellationToken()
        self._session_factory = session_factory or aiohttp.ClientSession
        self._connect = connect or websockets.connect

        self.session: Optional[aiohttp.ClientSession] = None
        self.tokens: Optional[TokenManager] = None
        self.participants: Optional[ParticipantQueryService] = None
        self.subscription: Optional[EventSubscriptionLoop] = None
        self.loop_task: Optional[asyncio.Task] = None
        self._dial_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Validate media, acquire the first token and start the event loop.

        Raises:
            MediaUnavailableError: before any network call is made.
            AuthError: initial token acquisition failed.
        """
        pbx = self.config.pbx
        self.media.ensure_available()
        logger.info("Audio file located", path=self.media.path, **self.media.describe())

        self.session = self._session_factory()
        timeout = self.config.http.request_timeout_sec
        self.tokens = TokenManager(self.session, pbx.base_url, pbx.client_id, pbx.client_secret, request_timeout=timeout)
        try:
            await self.tokens.acquire()
        except AuthError:
            await self._close_session()
            raise

        executor = AuthenticatedRequestExecutor(self.session, pbx.base_url, self.tokens, request_timeout=timeout)
        self.participants = ParticipantQueryService(executor, pbx.extension)
        feed = self.config.event_feed
        self.subscription = EventSubscriptionLoop(
            base_url=pbx.base_url,
            token_manager=self.tokens,
            participants=self.participants,
            streamer=AudioUploadStreamer(self.session, pbx.base_url),
            media=self.media,
            shutdown=self.shutdown,
            reconnect_delay=feed.reconnect_delay_sec,
            max_consecutive_failures=feed.max_consecutive_failures,
            subscribe_path=feed.subscribe_path,
            connect=self._connect,
        )
        self.loop_task = asyncio.create_task(self.subscription.run())
        if pbx.dial_destination:
            self._dial_task = asyncio.create_task(self._dial_when_subscribed(pbx.dial_destination))

    async def _dial_when_subscribed(self, destination: str) -> None:
        await self.subscription.subscribed.wait()
        try:
            await self.participants.make_call(destination)
        except (RequestError, AuthError) as e:
            logger.error("Error making call", destination=destination, error=str(e))

    async def stop(self) -> None:
        """Cancel in-flight uploads, stop the event loop and release the HTTP session."""
        logger.info("Shutting down PBX streamer")
        self.shutdown.cancel("shutdown")
        if self._dial_task and not self._dial_task.done():
            self._dial_task.cancel()
        if self.subscription is not None:
            await self.subscription.stop()
            await self.subscription.wait_for_uploads()
        if self.loop_task is not None and not self.loop_task.done():
            self.loop_task.cancel()
        if self.loop_task is not None:
            await asyncio.gather(self.loop_task, return_exceptions=True)
        await self._close_session()

    async def _close_session(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()


async def main() -> int:
    try:
        config = load_config()
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        configure_logging(log_level="INFO")
        logger.error("Failed to load configuration", error=str(e))
        return 1

    configure_logging(log_level=getattr(logging, config.logging.level.upper(), logging.INFO))

    errors, warnings = validate_production_config(config)
    if errors:
        logger.error("Configuration validation FAILED", errors=errors, warnings=warnings)
        return 1
    if warnings:
        logger.warning("Configuration warnings", warnings=warnings)

    logger.info("Starting the application", base_url=config.pbx.base_url, extension=config.pbx.extension)
    engine = StreamerEngine(config)
    try:
        await engine.start()
    except MediaUnavailableError as e:
        logger.error("Audio file not found", path=config.media.audio_path, error=str(e))
        return 1
    except AuthError as e:
        logger.error("Error initializing application", error=str(e))
        return 1

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    shutdown_wait = asyncio.create_task(shutdown_event.wait())
    await asyncio.wait({shutdown_wait, engine.loop_task}, return_when=asyncio.FIRST_COMPLETED)
    shutdown_wait.cancel()

    exit_code = 0
    if engine.loop_task.done() and not engine.loop_task.cancelled():
        error = engine.loop_task.exception()
        if isinstance(error, SubscriptionFailedError):
            logger.error("Event subscription failed permanently", error=str(error))
            exit_code = 1
        elif error is not None:
            logger.error("Event subscription crashed", error=str(error), exc_info=error)
            exit_code = 1

    await engine.stop()
    return exit_code


def run() -> None:
    exit_code = 0
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("PBX streamer has shut down.")
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
