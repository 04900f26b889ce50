"""Relay between a browser WebSocket and the OpenAI Realtime API.

The browser never sees the OpenAI key. For each client connection the relay
mints a short-lived session credential, opens its own upstream socket with
it, configures the session once OpenAI announces it, and then shuttles
frames in both directions until either side goes away.

Client protocol:
    -> {"type": "init", "systemInstruction"?: str, "voice"?: str}   first frame
    <- {"type": "connected"}       upstream socket open
    <- {"type": "ready"}           session configured
    <- {"type": "ping"}            keepalive
    <- {"type": "error", ...}      relay failure
    <- {"type": "disconnected"}    upstream gone
    Everything else is passed through verbatim.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import websockets
from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Policy violation
CLOSE_MISSING_KEY = 1008
# Internal error
CLOSE_RELAY_FAILED = 1011

CONNECT_ERRORS = (OSError, asyncio.TimeoutError, InvalidHandshake)


class RelayError(Exception):
    """Raised when the upstream session cannot be established."""
    pass


def build_session_config(instructions: str, voice: str) -> dict[str, Any]:
    """The ``session.update`` event sent once OpenAI creates the session."""
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "voice": voice,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": {
                "type": "server_vad",
                "threshold": 0.5,
                "prefix_padding_ms": 300,
                "silence_duration_ms": 1000,
            },
            "temperature": 0.8,
        },
    }


def _frame_type(raw: str | bytes) -> str | None:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data.get("type") if isinstance(data, dict) else None


class RealtimeRelay:
    """One client connection bridged to one OpenAI Realtime session.

    Usage:
        relay = RealtimeRelay(websocket)
        await relay.run()
    """

    def __init__(
        self,
        client: WebSocket,
        settings: Settings | None = None,
        connect: Callable[..., Awaitable[Any]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the relay.

        Args:
            client: Accepted client WebSocket
            settings: Settings override (defaults to the cached settings)
            connect: Upstream connector, ``websockets.connect`` by default
            transport: Optional httpx transport for the session request
            sleep: Awaitable sleep used for keepalive and connect backoff
        """
        self._client = client
        self._settings = settings or get_settings()
        self._connect = connect or websockets.connect
        self._transport = transport
        self._sleep = sleep

        self._instructions = self._settings.realtime_instructions
        self._voice = self._settings.realtime_voice
        self._upstream: Any = None
        self._configured = False
        self._held: list[str] = []

    async def run(self) -> None:
        """Serve the client until either side disconnects."""
        if not self._settings.openai_api_key:
            logger.error("Realtime relay rejected: OPENAI_API_KEY not configured")
            await self._client.close(code=CLOSE_MISSING_KEY, reason="OpenAI API key not configured")
            return

        if not await self._wait_for_init():
            logger.info("Client disconnected before init")
            return

        try:
            secret = await self._create_session()
            self._upstream = await self._open_upstream(secret)
        except (RelayError, *CONNECT_ERRORS) as e:
            logger.error(f"Failed to open OpenAI Realtime session: {e}")
            await self._notify_client({"type": "error", "message": "OpenAI connection error"})
            await self._close_client(code=CLOSE_RELAY_FAILED)
            return

        logger.info("Connected to OpenAI Realtime API")
        await self._client.send_json({"type": "connected"})

        tasks = [
            asyncio.create_task(self._upstream_to_client(), name="upstream_to_client"),
            asyncio.create_task(self._client_to_upstream(), name="client_to_upstream"),
            asyncio.create_task(self._keepalive(), name="keepalive"),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(f"Relay task {task.get_name()} failed: {task.exception()}")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self._teardown()

    # =========================================================================
    # Session setup
    # =========================================================================

    async def _wait_for_init(self) -> bool:
        """Consume frames until the client sends ``init``.

        ``session.update`` frames that arrive first are held for later.

        Returns:
            False if the client disconnected first
        """
        async for raw in self._client.iter_text():
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON frame before init")
                continue

            frame_type = message.get("type") if isinstance(message, dict) else None
            if frame_type == "init":
                self._instructions = message.get("systemInstruction") or self._instructions
                self._voice = message.get("voice") or self._voice
                return True
            if frame_type == "session.update":
                self._held.append(raw)
            else:
                logger.debug(f"Dropping {frame_type} frame received before init")
        return False

    async def _create_session(self) -> str:
        """Mint a short-lived client secret for the upstream connection."""
        url = f"{self._settings.openai_base_url.rstrip('/')}/realtime/sessions"
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as http:
            try:
                response = await http.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {self._settings.openai_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"model": self._settings.realtime_model, "voice": self._voice},
                )
            except httpx.HTTPError as e:
                raise RelayError(f"Session request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Realtime session error: {response.status_code} - {response.text}")
            raise RelayError(f"Session request failed with status {response.status_code}")

        secret = (response.json().get("client_secret") or {}).get("value")
        if not secret:
            raise RelayError("Session response has no client secret")
        return secret

    async def _open_upstream(self, secret: str) -> Any:
        """Connect to OpenAI with capped exponential backoff."""
        url = f"{self._settings.openai_realtime_url}?model={self._settings.realtime_model}"
        headers = {
            "Authorization": f"Bearer {secret}",
            "OpenAI-Beta": "realtime=v1",
        }
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(CONNECT_ERRORS),
            stop=stop_after_attempt(self._settings.realtime_connect_attempts),
            wait=wait_exponential(multiplier=0.5, max=self._settings.realtime_backoff_max_seconds),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._connect(url, additional_headers=headers)
        raise RelayError("Could not connect to OpenAI Realtime API")

    # =========================================================================
    # Relay loops
    # =========================================================================

    async def _upstream_to_client(self) -> None:
        try:
            async for raw in self._upstream:
                text = raw.decode() if isinstance(raw, bytes) else raw
                frame_type = _frame_type(text)

                if frame_type == "session.created":
                    logger.info("Session created, sending configuration")
                    await self._upstream.send(json.dumps(build_session_config(self._instructions, self._voice)))
                    self._configured = True
                    await self._flush_held()
                elif frame_type == "session.updated":
                    logger.info("Session updated, client ready")
                    await self._client.send_json({"type": "ready"})
                elif frame_type == "error":
                    logger.error(f"OpenAI Realtime error: {text}")

                await self._client.send_text(text)
        except ConnectionClosed as e:
            logger.info(f"OpenAI connection closed: {e}")
        except WebSocketDisconnect:
            logger.info("Client went away while forwarding upstream frames")

    async def _client_to_upstream(self) -> None:
        try:
            async for raw in self._client.iter_text():
                frame_type = _frame_type(raw)
                if frame_type == "init":
                    logger.debug("Ignoring repeated init")
                elif frame_type == "session.update" and not self._configured:
                    self._held.append(raw)
                else:
                    await self._upstream.send(raw)
        except ConnectionClosed as e:
            logger.info(f"OpenAI connection closed while forwarding client frames: {e}")
        logger.info("Client disconnected")

    async def _flush_held(self) -> None:
        held, self._held = self._held, []
        for raw in held:
            await self._upstream.send(raw)
        if held:
            logger.debug(f"Flushed {len(held)} held session.update frames")

    async def _keepalive(self) -> None:
        interval = self._settings.realtime_keepalive_seconds
        while True:
            await self._sleep(interval)
            await self._upstream.ping()
            await self._client.send_json({"type": "ping"})

    # =========================================================================
    # Teardown
    # =========================================================================

    async def _teardown(self) -> None:
        if self._upstream is not None:
            try:
                await self._upstream.close()
            except ConnectionClosed:
                pass
        await self._notify_client({"type": "disconnected"})
        await self._close_client()

    def _client_open(self) -> bool:
        return (
            self._client.client_state == WebSocketState.CONNECTED
            and self._client.application_state == WebSocketState.CONNECTED
        )

    async def _notify_client(self, payload: dict[str, Any]) -> None:
        if not self._client_open():
            return
        try:
            await self._client.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Could not notify client: {e}")

    async def _close_client(self, code: int = 1000) -> None:
        if not self._client_open():
            return
        try:
            await self._client.close(code=code)
        except RuntimeError as e:
            logger.debug(f"Client already closed: {e}")
