from __future__ import annotations

import json
import threading
from typing import Any, Dict, Iterator, List, Optional

import requests

from .catalog import LocalModel, ModelInfo
from .constants import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from .exceptions import ChatClientError


class OllamaClient:
    """Thin HTTP client for a local Ollama server."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = requests.Session()

    def _url(self, path: str) -> str:
        return f'{self.base_url}{path}'

    def list_models(self) -> List[LocalModel]:
        response = self.http.get(self._url('/api/tags'), timeout=self.timeout)
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as exc:
            raise ChatClientError('Model list response is not JSON') from exc
        return [LocalModel.from_api(item) for item in body.get('models') or [] if isinstance(item, dict)]

    def show_model(self, name: str) -> ModelInfo:
        response = self.http.post(self._url('/api/show'), json={'model': name}, timeout=self.timeout)
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as exc:
            raise ChatClientError(f'Model info response for {name!r} is not JSON') from exc
        return ModelInfo.from_api(body)

    def stream_chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        options: Optional[Dict[str, Any]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[str]:
        payload: Dict[str, Any] = {
            'model': model,
            'messages': messages,
            'stream': True,
        }
        if options:
            payload['options'] = options

        response = self.http.post(self._url('/api/chat'), json=payload, timeout=self.timeout, stream=True)
        response.raise_for_status()
        response.encoding = 'utf-8'

        try:
            for raw_line in response.iter_lines(decode_unicode=True):
                if stop_event is not None and stop_event.is_set():
                    break
                if not raw_line:
                    continue

                try:
                    chunk = json.loads(raw_line)
                except json.JSONDecodeError as exc:
                    raise ChatClientError(f'Failed to parse stream chunk: {raw_line!r}') from exc

                if chunk.get('error'):
                    raise ChatClientError(str(chunk['error']))

                text = (chunk.get('message') or {}).get('content')
                if text:
                    yield text
                if chunk.get('done'):
                    break
        finally:
            response.close()

    def close(self) -> None:
        self.http.close()
