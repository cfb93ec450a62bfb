from __future__ import annotations

import logging
import queue
import threading
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import requests

from .catalog import ModelPicker
from .constants import EMPTY_SESSION_LABEL, SUMMARY_MAX_CHARS
from .exceptions import ChatClientError
from .speech import SharedSpeech, SpeechEdgeDetector

if TYPE_CHECKING:
    from .client import OllamaClient

logger = logging.getLogger(__name__)

CHAT_ROLES = {'system', 'user', 'assistant'}


def summarize(text: str) -> str:
    line = ' '.join(text.split())
    if len(line) <= SUMMARY_MAX_CHARS:
        return line
    return line[:SUMMARY_MAX_CHARS - 1].rstrip() + '…'


class Session:
    """One conversation: transcript, summary label, and its own model picker."""

    def __init__(
        self,
        summary: str = '',
        messages: Optional[List[Dict[str, str]]] = None,
        picker: Optional[ModelPicker] = None,
        *,
        auto_speak: bool = True,
    ) -> None:
        self.summary = summary
        self.messages: List[Dict[str, str]] = list(messages or [])
        self.picker = picker or ModelPicker()
        self.auto_speak = auto_speak

        self.client: Optional['OllamaClient'] = None
        self.speech: Optional[SharedSpeech] = None
        self.speaking_index: Optional[int] = None

        self._events: 'queue.Queue[Tuple[str, Any]]' = queue.Queue()
        self._stream_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._reply_index: Optional[int] = None

    @property
    def is_streaming(self) -> bool:
        return self._reply_index is not None

    # ------------------------------------------------------------------
    # Tick

    def on_tick(
        self,
        client: Optional['OllamaClient'],
        speech: Optional[SharedSpeech],
        stopped_speaking: bool,
    ) -> None:
        self.client = client
        self.speech = speech
        if stopped_speaking:
            self.speaking_index = None
        self._drain_events()

    def _drain_events(self) -> None:
        while True:
            try:
                kind, payload = self._events.get_nowait()
            except queue.Empty:
                break

            index = self._reply_index
            if index is None:
                continue
            if kind == 'chunk':
                self.messages[index]['content'] += payload
            elif kind == 'error':
                self.messages.append({'role': 'error', 'content': payload})
            elif kind == 'done':
                self._finish_reply(index)

    def _finish_reply(self, index: int) -> None:
        self._reply_index = None
        self._stream_thread = None
        if not self.messages[index]['content'].strip():
            del self.messages[index]
            return
        if self.auto_speak and not self._stop_event.is_set():
            self.speak(index)

    # ------------------------------------------------------------------
    # Chat

    def api_messages(self) -> List[Dict[str, str]]:
        return [
            {'role': entry['role'], 'content': entry['content']}
            for entry in self.messages
            if entry.get('role') in CHAT_ROLES
        ]

    def send(self, text: str) -> bool:
        """Append a user message and start streaming the reply."""
        content = text.strip()
        if not content or self.is_streaming:
            return False
        if self.client is None or not self.picker.has_selection:
            return False

        if not self.summary:
            self.summary = summarize(content)
        self.messages.append({'role': 'user', 'content': content})
        history = self.api_messages()
        self.messages.append({'role': 'assistant', 'content': ''})
        self._reply_index = len(self.messages) - 1
        self._stop_event.clear()

        self._stream_thread = threading.Thread(
            target=self._stream,
            args=(self.client, self.picker.selected.name, history, self.picker.settings.to_options().to_payload()),
            daemon=True,
        )
        self._stream_thread.start()
        return True

    def _stream(
        self,
        client: 'OllamaClient',
        model: str,
        history: List[Dict[str, str]],
        options: Dict[str, Any],
    ) -> None:
        try:
            for chunk in client.stream_chat(
                model=model,
                messages=history,
                options=options,
                stop_event=self._stop_event,
            ):
                self._events.put(('chunk', chunk))
        except requests.RequestException as exc:
            logger.warning(f'Chat request to {model} failed: {exc}')
            self._events.put(('error', f'[Request Error] {exc}'))
        except ChatClientError as exc:
            logger.warning(f'Chat stream from {model} was malformed: {exc}')
            self._events.put(('error', f'[Client Error] {exc}'))
        finally:
            self._events.put(('done', None))

    def stop_streaming(self) -> None:
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> None:
        thread = self._stream_thread
        if thread is not None:
            thread.join(timeout)

    # ------------------------------------------------------------------
    # Speech

    def speak(self, index: int) -> bool:
        if self.speech is None or not 0 <= index < len(self.messages):
            return False
        if not self.messages[index]['content'].strip():
            return False
        try:
            self.speech.stop()
            self.speech.speak(self.messages[index]['content'])
        except Exception as exc:
            logger.error(f'Speech playback failed: {exc}')
            self.speaking_index = None
            return False
        self.speaking_index = index
        return True

    def stop_speaking(self) -> None:
        if self.speech is not None:
            try:
                self.speech.stop()
            except Exception as exc:
                logger.error(f'Failed to stop speech: {exc}')
        self.speaking_index = None

    # ------------------------------------------------------------------
    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'messages': [dict(entry) for entry in self.messages if entry.get('content')],
            'picker': self.picker.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any, *, auto_speak: bool = True) -> 'Session':
        if not isinstance(data, dict):
            return cls(auto_speak=auto_speak)
        messages = [
            {'role': str(entry.get('role', '')), 'content': str(entry.get('content', ''))}
            for entry in data.get('messages') or []
            if isinstance(entry, dict)
        ]
        return cls(
            summary=str(data.get('summary') or ''),
            messages=messages,
            picker=ModelPicker.from_dict(data.get('picker')),
            auto_speak=auto_speak,
        )


class SessionTab(Enum):
    CHATS = 'Chats'
    MODEL = 'Model'


class SessionDirectory:
    """Ordered sessions, the active one, and the per-tick speech routing."""

    def __init__(
        self,
        speech: Optional[SharedSpeech] = None,
        sessions: Optional[List[Session]] = None,
        active: Optional[int] = 0,
    ) -> None:
        self.sessions: List[Session] = list(sessions) if sessions is not None else [Session()]
        if active is not None and 0 <= active < len(self.sessions):
            self.active: Optional[int] = active
        else:
            self.active = 0 if self.sessions else None
        self.speech = speech
        self.detector = SpeechEdgeDetector(speech)
        self.tab = SessionTab.CHATS

    @property
    def active_session(self) -> Optional[Session]:
        if self.active is None:
            return None
        return self.sessions[self.active]

    def new_session(self, *, auto_speak: bool = True) -> int:
        self.sessions.append(Session(auto_speak=auto_speak))
        return len(self.sessions) - 1

    def select(self, index: int) -> None:
        if not 0 <= index < len(self.sessions):
            raise IndexError(f'No session at position {index}')
        self.active = index

    def labels(self) -> List[str]:
        return [session.summary or EMPTY_SESSION_LABEL for session in self.sessions]

    def tick(
        self,
        client: Optional['OllamaClient'],
        request_repaint: Optional[Callable[[], None]] = None,
    ) -> bool:
        stopped = self.detector.poll(request_repaint)
        session = self.active_session
        if session is not None:
            session.on_tick(client, self.speech, stopped)
        return stopped

    def to_dict(self) -> Dict[str, Any]:
        return {
            'active': self.active,
            'sessions': [session.to_dict() for session in self.sessions],
        }

    @classmethod
    def from_dict(
        cls,
        data: Any,
        speech: Optional[SharedSpeech] = None,
        *,
        auto_speak: bool = True,
    ) -> 'SessionDirectory':
        if not isinstance(data, dict) or not data.get('sessions'):
            return cls(speech, [Session(auto_speak=auto_speak)])
        sessions = [Session.from_dict(item, auto_speak=auto_speak) for item in data['sessions']]
        active = data.get('active')
        return cls(speech, sessions, active if isinstance(active, int) else 0)
