#!/usr/bin/env python3
"""
Transcription Session Tests

Drives the session with a fake websocket that yields aiohttp.WSMessage
frames, covering the handshake, audio queueing, fragment merging and
teardown.
"""

import asyncio
import json

import aiohttp
import pytest

from conftest import events_of
from ironterm.errors import AuthFailed
from ironterm.event_models import SSEEventType
from ironterm.services.transcription import (
    FragmentKind,
    ProviderNotice,
    SessionState,
    TaskFailed,
    TranscriptFragment,
    TranscriptionSession,
    TranscriptionStarted,
    decode_provider_message,
    merge_final,
)

SETTINGS = {
    "ws_url": "wss://nls.example/ws/v1",
    "app_key": "appkey123",
    "token": "tok-1",
}


class FakeWebSocket:
    """Minimal stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self):
        self.sent_text = []
        self.sent_bytes = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data: str):
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent_text.append(json.loads(data))

    async def send_bytes(self, data: bytes):
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent_bytes.append(data)

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)
        return True

    def exception(self):
        return None

    def feed(self, name: str, payload=None, **header):
        message = {"header": {"name": name, **header}, "payload": payload or {}}
        self._incoming.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, json.dumps(message), None))

    def feed_raw(self, text: str):
        self._incoming.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, text, None))

    def remote_close(self):
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._incoming.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class SlowWebSocket(FakeWebSocket):
    """send_bytes yields to the loop, as aiohttp does while draining its buffer."""

    async def send_bytes(self, data: bytes):
        await asyncio.sleep(0)
        await super().send_bytes(data)


class RefusingWebSocket(FakeWebSocket):
    """Accepts the connection but rejects every text frame."""

    async def send_str(self, data: str):
        raise ConnectionResetError("Cannot write to closing transport")


class FakeConnector:
    def __init__(self, socket_class=FakeWebSocket):
        self.socket_class = socket_class
        self.urls = []
        self.sockets = []

    async def __call__(self, url: str):
        self.urls.append(url)
        ws = self.socket_class()
        self.sockets.append(ws)
        return ws


async def static_token(settings):
    return settings["token"]


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


def make_session(events, settings=None, token_provider=static_token, socket_class=FakeWebSocket):
    connector = FakeConnector(socket_class)
    session = TranscriptionSession(dict(settings or SETTINGS), events, token_provider=token_provider, connect=connector)
    return session, connector


def fragments(events):
    return events_of(events, SSEEventType.TRANSCRIPT_FRAGMENT)


# ---------------------------------------------------------------- pure helpers

def test_merge_final_extends_and_ignores_repeats():
    acc, last, changed = merge_final("", "", "hello")
    assert (acc, changed) == ("hello", True)
    acc, last, changed = merge_final(acc, last, "hello world")
    assert (acc, changed) == ("hello world", True)
    assert merge_final(acc, last, "hello world") == ("hello world", "hello world", False)


def test_merge_final_appends_unrelated_sentence():
    assert merge_final("first one.", "first one.", "second.")[0] == "first one. second."


def test_merge_final_trims_and_skips_blank_finals():
    acc, last, changed = merge_final("", "", " hello ")
    assert (acc, last, changed) == ("hello", "hello", True)

    assert merge_final(acc, last, "   ") == ("hello", "hello", False)
    assert merge_final(acc, last, "hello ") == ("hello", "hello", False)
    assert merge_final(acc, last, " next. ")[0] == "hello next."


def test_decode_provider_messages():
    assert decode_provider_message('{"header": {"name": "TranscriptionStarted"}}') == TranscriptionStarted()
    assert decode_provider_message(
        json.dumps({"header": {"name": "TranscriptionResultChanged"}, "payload": {"result": "he"}})
    ) == TranscriptFragment(text="he", kind=FragmentKind.INTERIM)
    assert decode_provider_message(
        json.dumps({"header": {"name": "SentenceEnd"}, "payload": {"result": "hello."}})
    ) == TranscriptFragment(text="hello.", kind=FragmentKind.FINAL)
    assert decode_provider_message(
        json.dumps({"header": {"name": "X"}, "payload": {"output": {"text": "hi"}, "sentence_end": True}})
    ) == TranscriptFragment(text="hi", kind=FragmentKind.FINAL)
    assert decode_provider_message(
        json.dumps({"header": {"name": "TaskFailed", "status_text": "Gateway:ACCESS_DENIED"}})
    ) == TaskFailed(message="Gateway:ACCESS_DENIED")
    assert decode_provider_message('{"header": {"name": "SentenceBegin"}, "payload": {}}') == ProviderNotice(
        name="SentenceBegin"
    )
    assert decode_provider_message("not json") is None


# ---------------------------------------------------------------- session

async def test_start_sends_start_directive(events):
    session, connector = make_session(events)

    assert await session.start(16000) is True

    assert connector.urls == ["wss://nls.example/ws/v1?token=tok-1&appkey=appkey123"]
    directive = connector.sockets[0].sent_text[0]
    assert directive["header"]["name"] == "StartTranscription"
    assert directive["header"]["namespace"] == "SpeechTranscriber"
    assert directive["header"]["appkey"] == "appkey123"
    assert directive["header"]["task_id"] == session.task_id
    assert len(directive["header"]["message_id"]) == 32
    assert directive["payload"] == {
        "format": "pcm",
        "sample_rate": 16000,
        "enable_intermediate_result": True,
        "enable_punctuation_prediction": True,
        "enable_inverse_text_normalization": True,
    }
    assert session.state == SessionState.AWAITING_READY
    await session.stop()


async def test_audio_is_queued_until_ready_then_flushed_in_order(events):
    session, connector = make_session(events)
    await session.start(16000)
    ws = connector.sockets[0]

    await session.push_audio(b"one")
    await session.push_audio(b"two")
    assert ws.sent_bytes == []

    ws.feed("TranscriptionStarted")
    await settle()
    await session.push_audio(b"three")

    assert session.state == SessionState.STREAMING
    assert ws.sent_bytes == [b"one", b"two", b"three"]
    await session.stop()


async def test_audio_without_session_is_dropped(events):
    session, connector = make_session(events)
    await session.push_audio(b"lost")
    assert connector.sockets == []
    assert list(session.audio_queue) == []


async def test_interim_and_final_fragments_are_merged(events):
    session, connector = make_session(events)
    await session.start(16000)
    ws = connector.sockets[0]

    ws.feed("TranscriptionResultChanged", {"result": "hel"})
    ws.feed("SentenceEnd", {"result": "hello"})
    ws.feed("SentenceEnd", {"result": "hello"})
    ws.feed("SentenceEnd", {"result": "hello world"})
    await settle()

    assert fragments(events) == [
        {"text": "hel", "isFinal": False},
        {"text": "hello", "isFinal": True},
        {"text": "hello world", "isFinal": True},
    ]
    assert session.accumulated == "hello world"
    await session.stop()


async def test_unparseable_messages_are_ignored(events):
    session, connector = make_session(events)
    await session.start(16000)
    connector.sockets[0].feed_raw("{oops")
    await settle()
    assert fragments(events) == []
    assert session.state == SessionState.AWAITING_READY
    await session.stop()


async def test_task_failed_reports_error(events):
    session, connector = make_session(events)
    await session.start(16000)
    connector.sockets[0].feed("TaskFailed", status_text="Gateway:ACCESS_DENIED:token expired")
    await settle()

    errors = events_of(events, SSEEventType.TRANSCRIPT_ERROR)
    assert errors == [{"message": "Gateway:ACCESS_DENIED:token expired"}]
    await session.stop()


async def test_stop_before_start_is_noop(events):
    session, connector = make_session(events)
    assert await session.stop() is True
    assert connector.sockets == []
    assert events.history == []


async def test_stop_sends_stop_directive_and_final_transcript_once(events):
    session, connector = make_session(events)
    await session.start(16000)
    ws = connector.sockets[0]
    ws.feed("SentenceEnd", {"result": "done"})
    await settle()

    assert await session.stop() is True
    await settle()

    assert ws.sent_text[-1]["header"]["name"] == "StopTranscription"
    assert ws.sent_text[-1]["payload"] == {}
    assert ws.closed
    assert session.task_id is None and session.state == SessionState.CLOSED
    finals = [f for f in fragments(events) if f["isFinal"]]
    assert finals == [{"text": "done", "isFinal": True}, {"text": "done", "isFinal": True}]

    assert await session.stop() is True
    assert len(fragments(events)) == 2


async def test_remote_close_delivers_transcript_and_closes(events):
    session, connector = make_session(events)
    await session.start(16000)
    connector.sockets[0].remote_close()
    await settle()

    assert fragments(events) == [{"text": "", "isFinal": True}]
    assert session.state == SessionState.CLOSED
    assert session.task_id is None
    await session.push_audio(b"late")
    assert list(session.audio_queue) == []


async def test_second_start_tears_down_first(events):
    session, connector = make_session(events)
    await session.start(16000)
    first_task = session.task_id

    assert await session.start(8000) is True

    first, second = connector.sockets
    assert first.closed
    assert first.sent_text[-1]["header"]["name"] == "StopTranscription"
    assert first.sent_text[-1]["header"]["task_id"] == first_task
    assert session.task_id != first_task
    assert second.sent_text[0]["payload"]["sample_rate"] == 8000
    await session.stop()


async def test_missing_app_key_fails_start(events):
    session, connector = make_session(events, settings={**SETTINGS, "app_key": ""})

    assert await session.start(16000) is False

    assert connector.sockets == []
    assert session.state == SessionState.IDLE and session.task_id is None
    assert events_of(events, SSEEventType.TRANSCRIPT_ERROR) == [{"message": "missing Aliyun app key"}]


async def test_token_failure_fails_start(events):
    async def no_token(settings):
        raise AuthFailed("missing Aliyun NLS token or access key")

    session, connector = make_session(events, token_provider=no_token)

    assert await session.start(16000) is False
    assert connector.sockets == []
    assert events_of(events, SSEEventType.TRANSCRIPT_ERROR)[0]["message"].startswith("missing Aliyun NLS token")


async def test_connect_failure_fails_start(events):
    async def refuse(url):
        raise aiohttp.ClientConnectionError("connection refused")

    session = TranscriptionSession(dict(SETTINGS), events, token_provider=static_token, connect=refuse)

    assert await session.start(16000) is False
    assert session.state == SessionState.IDLE
    assert "connection refused" in events_of(events, SSEEventType.TRANSCRIPT_ERROR)[0]["message"]


@pytest.mark.parametrize("frame", [b"", None])
async def test_empty_frames_are_ignored(events, frame):
    session, connector = make_session(events)
    await session.start(16000)
    await session.push_audio(frame)
    assert list(session.audio_queue) == []
    await session.stop()


async def test_audio_pushed_during_flush_stays_behind_queued_frames(events):
    session, connector = make_session(events, socket_class=SlowWebSocket)
    await session.start(16000)
    ws = connector.sockets[0]
    for frame in (b"q0", b"q1", b"q2"):
        await session.push_audio(frame)

    flush = asyncio.create_task(session.handle_message(TranscriptionStarted()))
    await asyncio.sleep(0)
    await session.push_audio(b"live")
    await flush
    await session.push_audio(b"after")

    assert ws.sent_bytes == [b"q0", b"q1", b"q2", b"live", b"after"]
    assert session.state == SessionState.STREAMING
    await session.stop()


async def test_blank_and_padded_finals_do_not_grow_transcript(events):
    session, connector = make_session(events)
    await session.start(16000)
    ws = connector.sockets[0]

    ws.feed("SentenceEnd", {"result": "hello"})
    ws.feed("SentenceEnd", {"result": " "})
    ws.feed("SentenceEnd", {"result": "hello "})
    await settle()

    assert session.accumulated == "hello"
    assert fragments(events) == [{"text": "hello", "isFinal": True}]
    await session.stop()


async def test_rejected_start_directive_ends_session(events):
    session, connector = make_session(events, socket_class=RefusingWebSocket)

    assert await session.start(16000) is False
    await settle()

    assert connector.sockets[0].closed
    assert session.task_id is None and session.state == SessionState.CLOSED
    await session.push_audio(b"late")
    assert list(session.audio_queue) == []
    assert "start directive failed" in events_of(events, SSEEventType.TRANSCRIPT_ERROR)[0]["message"]
