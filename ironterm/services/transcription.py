"""
Transcription Session

Streams microphone PCM to the Aliyun NLS SpeechTranscriber websocket and
pushes merged interim/final transcript fragments to the overlay.

Lifecycle: IDLE -> HANDSHAKING -> CONNECTING -> AWAITING_READY -> STREAMING
-> CLOSED. Audio pushed before the provider acknowledges the task is queued
and flushed in order on TranscriptionStarted.
"""

import asyncio
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, Union
from urllib.parse import urlencode

import aiohttp

from ..errors import AuthFailed, TransportError
from ..event_models import SSEEventType, TranscriptErrorData, TranscriptFragmentData
from .nls_auth import fetch_token
from .sse_manager import SSEManager

logger = logging.getLogger(__name__)

NAMESPACE = "SpeechTranscriber"
FINAL_MESSAGE_NAMES = ("SentenceEnd", "TranscriptionCompleted")
FINAL_PAYLOAD_FLAGS = ("is_final", "final", "sentence_end")
READER_SHUTDOWN_TIMEOUT = 5.0


class SessionState(str, Enum):
    IDLE = "idle"
    HANDSHAKING = "handshaking"
    CONNECTING = "connecting"
    AWAITING_READY = "awaiting_ready"
    STREAMING = "streaming"
    CLOSED = "closed"


# States in which audio is buffered rather than sent
PENDING_STATES = (SessionState.HANDSHAKING, SessionState.CONNECTING, SessionState.AWAITING_READY)


# ─────────────────────────────────────────────────────────────── provider messages
class FragmentKind(str, Enum):
    INTERIM = "interim"
    FINAL = "final"


@dataclass(frozen=True)
class TranscriptionStarted:
    pass


@dataclass(frozen=True)
class TranscriptFragment:
    text: str
    kind: FragmentKind


@dataclass(frozen=True)
class TaskFailed:
    message: str


@dataclass(frozen=True)
class ProviderNotice:
    name: str


ProviderMessage = Union[TranscriptionStarted, TranscriptFragment, TaskFailed, ProviderNotice]


def _fragment_text(payload: Dict[str, Any]) -> str:
    output = payload.get("output")
    for candidate in (
        payload.get("result"),
        output.get("text") if isinstance(output, dict) else None,
        payload.get("text"),
    ):
        if isinstance(candidate, str) and candidate:
            return candidate
    return ""


def decode_provider_message(raw: str) -> Optional[ProviderMessage]:
    """Decode one websocket text frame. Returns None when it cannot be parsed."""
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug(f"Ignoring unparseable provider message: {e}")
        return None
    if not isinstance(message, dict):
        return None

    header = message.get("header") if isinstance(message.get("header"), dict) else {}
    payload = message.get("payload") if isinstance(message.get("payload"), dict) else {}
    name = str(header.get("name") or "")

    if name == "TranscriptionStarted":
        return TranscriptionStarted()
    if name == "TaskFailed":
        return TaskFailed(message=str(header.get("status_text") or "transcription task failed"))

    text = _fragment_text(payload)
    if not text:
        return ProviderNotice(name=name)

    is_final = name in FINAL_MESSAGE_NAMES or any(payload.get(flag) is True for flag in FINAL_PAYLOAD_FLAGS)
    return TranscriptFragment(text=text, kind=FragmentKind.FINAL if is_final else FragmentKind.INTERIM)


def merge_final(accumulated: str, last_final: str, text: str) -> Tuple[str, str, bool]:
    """Fold a final fragment into the running transcript.

    Returns (accumulated, last_final, changed). Text is compared trimmed. A
    blank final or a repeat of the last final is a no-op; a final that extends
    the transcript replaces it; anything else is appended after a space.
    """
    text = text.strip()
    if not text or text == last_final:
        return accumulated, last_final, False
    if text.startswith(accumulated):
        merged = text
    else:
        merged = f"{accumulated} {text}".strip()
    return merged, text, True


TokenProvider = Callable[[Dict[str, Any]], Awaitable[str]]
Connector = Callable[[str], Awaitable[Any]]


# ─────────────────────────────────────────────────────────────── session
class TranscriptionSession:
    """
    Single live speech-to-text session.

    Args:
        settings: Output of ConfigManager.get_transcription_settings()
        events: Push-event hub for fragments and errors
        token_provider: Coroutine returning an access token; raises AuthFailed
        connect: Coroutine opening the websocket for a URL. Defaults to aiohttp.
    """

    def __init__(
        self,
        settings: Dict[str, Any],
        events: SSEManager,
        token_provider: TokenProvider = fetch_token,
        connect: Optional[Connector] = None,
    ):
        self.settings = settings
        self.events = events
        self._token_provider = token_provider
        self._connect = connect or self._aiohttp_connect
        self._http: Optional[aiohttp.ClientSession] = None

        self.state = SessionState.IDLE
        self.task_id: Optional[str] = None
        self.ready = False
        self.last_final = ""
        self.accumulated = ""
        self.interim = ""
        self.audio_queue: Deque[bytes] = deque()

        self._ws = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def app_key(self) -> str:
        return self.settings.get("app_key") or ""

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _aiohttp_connect(self, url: str):
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return await self._http.ws_connect(url, heartbeat=30.0)

    async def close(self) -> None:
        """Stop any live session and release the HTTP client."""
        await self.stop()
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    def _directive(self, name: str, payload: Dict[str, Any]) -> str:
        return json.dumps({
            "header": {
                "appkey": self.app_key,
                "namespace": NAMESPACE,
                "name": name,
                "task_id": self.task_id,
                "message_id": uuid.uuid4().hex,
            },
            "payload": payload,
        })

    async def _send_audio(self, frame: bytes) -> None:
        try:
            await self._ws.send_bytes(frame)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            await self._error(str(TransportError(f"audio send failed: {e}")))

    async def _error(self, message: str) -> None:
        logger.error(f"Transcription error: {message}")
        await self.events.broadcast_event(SSEEventType.TRANSCRIPT_ERROR, TranscriptErrorData(message=message))

    async def _fragment(self, text: str, is_final: bool) -> None:
        await self.events.broadcast_event(
            SSEEventType.TRANSCRIPT_FRAGMENT, TranscriptFragmentData(text=text, is_final=is_final)
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, sample_rate: int = 16000) -> bool:
        """
        Open a new session, tearing down any live one first.

        Returns:
            True once StartTranscription was sent, False on auth/connect failure
        """
        if self.task_id:
            await self.stop()

        task_id = uuid.uuid4().hex
        self.task_id = task_id
        self.ready = False
        self.last_final = ""
        self.accumulated = ""
        self.interim = ""
        self.audio_queue.clear()
        self.state = SessionState.HANDSHAKING
        logger.info(f"Transcription {task_id} starting at {sample_rate} Hz")

        try:
            if not self.app_key:
                raise AuthFailed("missing Aliyun app key")
            token = await self._token_provider(self.settings)
        except AuthFailed as e:
            if self.task_id == task_id:
                self._reset(SessionState.IDLE)
            await self._error(str(e))
            return False

        if self.task_id != task_id:
            logger.info(f"Transcription {task_id} superseded during handshake")
            return False

        self.state = SessionState.CONNECTING
        url = f"{self.settings.get('ws_url')}?{urlencode({'token': token, 'appkey': self.app_key})}"
        try:
            ws = await self._connect(url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            if self.task_id == task_id:
                self._reset(SessionState.IDLE)
            await self._error(str(TransportError(f"connect failed: {e}")))
            return False

        if self.task_id != task_id:
            await ws.close()
            return False

        self._ws = ws
        self.state = SessionState.AWAITING_READY
        self._reader = asyncio.create_task(self._read_loop(ws, task_id), name=f"transcription-{task_id}")
        try:
            await ws.send_str(self._directive("StartTranscription", {
                "format": "pcm",
                "sample_rate": sample_rate,
                "enable_intermediate_result": True,
                "enable_punctuation_prediction": True,
                "enable_inverse_text_normalization": True,
            }))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            await self._error(str(TransportError(f"start directive failed: {e}")))
            await self.stop()
            return False
        return True

    async def push_audio(self, frame: bytes) -> None:
        """Send, queue or drop one PCM frame depending on the session state."""
        if not frame:
            return
        if self.state == SessionState.STREAMING and self._ws is not None:
            await self._send_audio(frame)
        elif self.state in PENDING_STATES:
            self.audio_queue.append(frame)
        else:
            logger.debug(f"Dropping {len(frame)} audio bytes: no live session")

    async def stop(self) -> bool:
        """End the live session. Stopping with no session is a successful no-op."""
        if not self.task_id:
            return True

        task_id = self.task_id
        ws, reader = self._ws, self._reader
        if ws is not None and not ws.closed:
            try:
                await ws.send_str(self._directive("StopTranscription", {}))
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                logger.warning(f"StopTranscription not sent for {task_id}: {e}")
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                logger.warning(f"Websocket close failed for {task_id}: {e}")

        self._reset(SessionState.CLOSED)

        if reader is not None and reader is not asyncio.current_task():
            try:
                await asyncio.wait_for(reader, timeout=READER_SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"Transcription reader for {task_id} did not finish in time")
        logger.info(f"Transcription {task_id} stopped")
        return True

    # ------------------------------------------------------------------
    # Incoming messages
    # ------------------------------------------------------------------

    def _reset(self, state: SessionState) -> None:
        self.task_id = None
        self.ready = False
        self.audio_queue.clear()
        self._ws = None
        self._reader = None
        self.state = state

    async def handle_message(self, message: ProviderMessage) -> None:
        if isinstance(message, TranscriptionStarted):
            ws = self._ws
            logger.info(f"Transcription {self.task_id} ready, flushing {len(self.audio_queue)} queued frames")
            # frames pushed while flushing still land in the queue
            while self.audio_queue and ws is not None and self._ws is ws:
                await self._send_audio(self.audio_queue.popleft())
            if ws is not None and self._ws is ws:
                self.ready = True
                self.state = SessionState.STREAMING

        elif isinstance(message, TranscriptFragment):
            if message.kind == FragmentKind.INTERIM:
                self.interim = message.text
                await self._fragment(message.text, is_final=False)
                return
            self.accumulated, self.last_final, changed = merge_final(
                self.accumulated, self.last_final, message.text
            )
            if changed:
                self.interim = ""
                await self._fragment(self.accumulated, is_final=True)

        elif isinstance(message, TaskFailed):
            await self._error(message.message)

        else:
            logger.debug(f"Provider notice: {message.name}")

    async def _read_loop(self, ws, task_id: str) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    decoded = decode_provider_message(msg.data)
                    if decoded is not None:
                        await self.handle_message(decoded)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    await self._error(str(TransportError(f"websocket error: {ws.exception()}")))
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break
        except (aiohttp.ClientError, ConnectionError) as e:
            await self._error(str(TransportError(f"websocket read failed: {e}")))
        finally:
            # local or remote close: deliver the transcript once
            await self._fragment(self.accumulated, is_final=True)
            if self.task_id == task_id:
                self._reset(SessionState.CLOSED)
            logger.info(f"Transcription {task_id} transport closed")
