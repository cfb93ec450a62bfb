from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class SpeechDevice(Protocol):
    def is_speaking(self) -> bool:
        ...

    def speak(self, text: str) -> None:
        ...

    def stop(self) -> None:
        ...


class SharedSpeech:
    """Speech device shared between the edge detector and the sessions.

    Every call goes through one lock, so status reads and playback commands
    never overlap even when they come from different threads.
    """

    def __init__(self, device: SpeechDevice) -> None:
        self._device = device
        self._lock = threading.RLock()

    def is_speaking(self) -> bool:
        with self._lock:
            return self._device.is_speaking()

    def speak(self, text: str) -> None:
        with self._lock:
            self._device.speak(text)

    def stop(self) -> None:
        with self._lock:
            self._device.stop()

    def close(self) -> None:
        closer = getattr(self._device, "close", None)
        with self._lock:
            if closer is not None:
                closer()
            else:
                self._device.stop()


def open_speech(factory: Callable[[], SpeechDevice]) -> Optional[SharedSpeech]:
    """Build the speech device, or return None when it cannot be created."""
    try:
        device = factory()
    except Exception as exc:
        logger.error(f"Failed to initialize text to speech: {exc}")
        return None
    return SharedSpeech(device)


class SpeechEdgeDetector:
    """Samples the device once per tick and reports when speech has just ended."""

    def __init__(self, speech: Optional[SharedSpeech]) -> None:
        self.speech = speech
        self.is_speaking = False

    def _read(self) -> bool:
        if self.speech is None:
            return False
        try:
            return bool(self.speech.is_speaking())
        except Exception as exc:
            logger.debug(f"Speech status unavailable: {exc}")
            return False

    def poll(self, request_repaint: Optional[Callable[[], None]] = None) -> bool:
        was_speaking = self.is_speaking
        self.is_speaking = self._read()
        if self.is_speaking and request_repaint is not None:
            request_repaint()
        return was_speaking and not self.is_speaking
