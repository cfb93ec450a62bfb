from typing import Any, Dict, Iterable, List, Optional

import pytest

from ollama_desk.catalog import LocalModel, ModelInfo
from ollama_desk.speech import SharedSpeech


class ScriptedSpeechDevice:
    """Speech device whose busy flag follows a fixed script, one entry per read."""

    def __init__(self, states: Iterable[Any] = ()) -> None:
        self.states = list(states)
        self.spoken: List[str] = []
        self.stops = 0

    def is_speaking(self) -> bool:
        state = self.states.pop(0) if self.states else False
        if isinstance(state, Exception):
            raise state
        return state

    def speak(self, text: str) -> None:
        self.spoken.append(text)

    def stop(self) -> None:
        self.stops += 1


class FakeClient:
    def __init__(
        self,
        models: Optional[List[LocalModel]] = None,
        infos: Optional[Dict[str, ModelInfo]] = None,
        reply: Iterable[str] = (),
        error: Optional[Exception] = None,
    ) -> None:
        self.models = models or []
        self.infos = infos or {}
        self.reply = list(reply)
        self.error = error
        self.list_calls = 0
        self.show_calls: List[str] = []
        self.chat_calls: List[Dict[str, Any]] = []

    def list_models(self) -> List[LocalModel]:
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.models)

    def show_model(self, name: str) -> ModelInfo:
        self.show_calls.append(name)
        if self.error is not None:
            raise self.error
        return self.infos[name]

    def stream_chat(self, *, model, messages, options=None, stop_event=None):
        self.chat_calls.append({"model": model, "messages": messages, "options": options})
        if self.error is not None:
            raise self.error
        for chunk in self.reply:
            yield chunk


@pytest.fixture
def catalog():
    return [
        LocalModel("gemma:latest", "2024-01-01T00:00:00Z", 10),
        LocalModel("nous-hermes2:latest", "2024-02-01T00:00:00Z", 50),
        LocalModel("starling-lm:7b-beta-q5_K_M", "2024-03-01T00:00:00Z", 50),
    ]


@pytest.fixture
def make_speech():
    def _make(states: Iterable[Any] = ()):
        device = ScriptedSpeechDevice(states)
        return device, SharedSpeech(device)

    return _make
