"""Tests for the OpenAI Realtime relay."""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from starlette.websockets import WebSocketState
from websockets.exceptions import InvalidHandshake

from app.config import Settings
from app.services.realtime_relay import (
    CLOSE_MISSING_KEY,
    CLOSE_RELAY_FAILED,
    RealtimeRelay,
    build_session_config,
)


class FakeClientSocket:
    """Browser side of the relay."""

    def __init__(self, *frames: dict) -> None:
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.push(frame)
        self.sent: list[dict] = []
        self.close_code: int | None = None
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    def push(self, frame: dict) -> None:
        self._frames.put_nowait(json.dumps(frame))

    def disconnect(self) -> None:
        self._frames.put_nowait(None)

    async def iter_text(self):
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            yield frame

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED


class FakeUpstream:
    """OpenAI side of the relay."""

    def __init__(self) -> None:
        self._frames: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.pings = 0
        self.closed = False

    def push(self, frame: dict) -> None:
        self._frames.put_nowait(json.dumps(frame))

    def drop(self) -> None:
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            yield frame

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def ping(self) -> None:
        self.pings += 1

    async def close(self) -> None:
        self.closed = True


async def _never(seconds: float) -> None:
    await asyncio.Event().wait()


async def _until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def _session_transport(status: int = 200, secret: str | None = "ek_test") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        body = {"client_secret": {"value": secret}} if secret else {}
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="sk-test", realtime_connect_attempts=3)


class TestSessionConfig:

    def test_defaults(self):
        config = build_session_config("Be brief.", "verse")

        assert config["type"] == "session.update"
        session = config["session"]
        assert session["instructions"] == "Be brief."
        assert session["voice"] == "verse"
        assert session["modalities"] == ["text", "audio"]
        assert session["input_audio_format"] == "pcm16"
        assert session["turn_detection"]["type"] == "server_vad"
        assert session["turn_detection"]["silence_duration_ms"] == 1000


class TestRealtimeRelay:
    """Tests for the relay lifecycle."""

    @pytest.mark.asyncio
    async def test_missing_api_key_closes_with_policy_violation(self):
        client = FakeClientSocket()
        connect = AsyncMock()

        await RealtimeRelay(client, settings=Settings(openai_api_key=""), connect=connect).run()

        assert client.close_code == CLOSE_MISSING_KEY
        connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_leaves_before_init(self, settings):
        client = FakeClientSocket({"type": "input_audio_buffer.append"})
        client.disconnect()
        connect = AsyncMock()

        await RealtimeRelay(client, settings=settings, connect=connect, transport=_session_transport()).run()

        connect.assert_not_awaited()
        assert client.sent == []

    @pytest.mark.asyncio
    async def test_configuration_waits_for_session_created(self, settings):
        client = FakeClientSocket(
            {"type": "session.update", "session": {"temperature": 0.6}},
            {"type": "init", "systemInstruction": "Be brief.", "voice": "verse"},
        )
        upstream = FakeUpstream()
        connect = AsyncMock(return_value=upstream)
        relay = RealtimeRelay(
            client, settings=settings, connect=connect, transport=_session_transport(), sleep=_never
        )

        task = asyncio.create_task(relay.run())
        await _until(lambda: {"type": "connected"} in client.sent)

        url = connect.await_args.args[0]
        headers = connect.await_args.kwargs["additional_headers"]
        assert url.startswith("wss://api.openai.com/v1/realtime?model=")
        assert headers["Authorization"] == "Bearer ek_test"
        assert headers["OpenAI-Beta"] == "realtime=v1"

        # Nothing goes upstream before OpenAI announces the session
        client.push({"type": "session.update", "session": {"voice": "ash"}})
        await asyncio.sleep(0.05)
        assert upstream.sent == []

        upstream.push({"type": "session.created"})
        await _until(lambda: len(upstream.sent) == 3)
        assert upstream.sent[0] == build_session_config("Be brief.", "verse")
        assert upstream.sent[1] == {"type": "session.update", "session": {"temperature": 0.6}}
        assert upstream.sent[2] == {"type": "session.update", "session": {"voice": "ash"}}

        upstream.push({"type": "session.updated"})
        await _until(lambda: {"type": "ready"} in client.sent)
        assert {"type": "session.created"} in client.sent

        client.push({"type": "input_audio_buffer.append", "audio": "AAAA"})
        await _until(lambda: len(upstream.sent) == 4)
        assert upstream.sent[3]["type"] == "input_audio_buffer.append"

        client.disconnect()
        await asyncio.wait_for(task, 2.0)

        assert upstream.closed is True
        assert client.close_code == 1000

    @pytest.mark.asyncio
    async def test_upstream_close_closes_client(self, settings):
        client = FakeClientSocket({"type": "init"})
        upstream = FakeUpstream()
        relay = RealtimeRelay(
            client,
            settings=settings,
            connect=AsyncMock(return_value=upstream),
            transport=_session_transport(),
            sleep=_never,
        )

        task = asyncio.create_task(relay.run())
        await _until(lambda: {"type": "connected"} in client.sent)
        upstream.drop()
        await asyncio.wait_for(task, 2.0)

        assert client.sent[-1] == {"type": "disconnected"}
        assert client.close_code == 1000
        assert upstream.closed is True

    @pytest.mark.asyncio
    async def test_connect_retries_with_backoff(self, settings, recording_sleep):
        client = FakeClientSocket({"type": "init"})
        connect = AsyncMock(side_effect=OSError("connection refused"))

        await RealtimeRelay(
            client, settings=settings, connect=connect, transport=_session_transport(), sleep=recording_sleep
        ).run()

        assert connect.await_count == 3
        assert recording_sleep.calls == [0.5, 1.0]
        assert client.sent == [{"type": "error", "message": "OpenAI connection error"}]
        assert client.close_code == CLOSE_RELAY_FAILED

    @pytest.mark.asyncio
    async def test_rejected_handshake_is_retried(self, settings, recording_sleep):
        client = FakeClientSocket({"type": "init"})
        connect = AsyncMock(side_effect=InvalidHandshake("server rejected WebSocket connection: HTTP 503"))

        await RealtimeRelay(
            client, settings=settings, connect=connect, transport=_session_transport(), sleep=recording_sleep
        ).run()

        assert connect.await_count == 3
        assert client.close_code == CLOSE_RELAY_FAILED

    @pytest.mark.asyncio
    async def test_session_request_failure(self, settings):
        client = FakeClientSocket({"type": "init"})
        connect = AsyncMock()

        await RealtimeRelay(
            client, settings=settings, connect=connect, transport=_session_transport(status=401, secret=None)
        ).run()

        connect.assert_not_awaited()
        assert client.sent == [{"type": "error", "message": "OpenAI connection error"}]
        assert client.close_code == CLOSE_RELAY_FAILED

    @pytest.mark.asyncio
    async def test_keepalive_pings_both_sides(self, settings):
        client = FakeClientSocket()
        upstream = FakeUpstream()
        delays = []

        async def sleep(seconds):
            delays.append(seconds)
            if len(delays) > 2:
                raise asyncio.CancelledError

        relay = RealtimeRelay(client, settings=settings, sleep=sleep)
        relay._upstream = upstream

        with pytest.raises(asyncio.CancelledError):
            await relay._keepalive()

        assert delays == [20.0, 20.0, 20.0]
        assert upstream.pings == 2
        assert client.sent == [{"type": "ping"}, {"type": "ping"}]
