from __future__ import annotations

import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set, Tuple

from .catalog import FetchRequest, LocalModel, RequestKind
from .constants import RETRY_INTERVAL

if TYPE_CHECKING:
    from .client import OllamaClient
    from .sessions import SessionDirectory

logger = logging.getLogger(__name__)


class ModelFetcher:
    """Runs catalog and model-info requests off the UI thread.

    ``request`` is handed to the model pickers as their fetch callback. A
    request stays in flight until its result has been applied by ``drain``
    on the UI thread, and repeats of an in-flight request are dropped.
    """

    def __init__(
        self,
        client: "OllamaClient",
        *,
        retry_interval: float = RETRY_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        start: bool = True,
    ) -> None:
        self.client = client
        self.catalog: Optional[List[LocalModel]] = None
        self.retry_interval = retry_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight: Set[FetchRequest] = set()
        self._failed_until: Dict[FetchRequest, float] = {}
        self._requests: "queue.Queue[FetchRequest]" = queue.Queue()
        self._results: "queue.Queue[Tuple[str, FetchRequest, Any]]" = queue.Queue()
        self._closed = threading.Event()
        self._worker: Optional[threading.Thread] = None
        if start:
            self._worker = threading.Thread(target=self._worker_loop, daemon=True)
            self._worker.start()

    def request(self, req: FetchRequest) -> None:
        with self._lock:
            if req in self._in_flight:
                return
            if self._failed_until.get(req, 0.0) > self._clock():
                return
            self._in_flight.add(req)
        logger.debug(f"Queued fetch {req}")
        self._requests.put(req)

    def is_in_flight(self, req: FetchRequest) -> bool:
        with self._lock:
            return req in self._in_flight

    def process_next(self, timeout: Optional[float] = None) -> bool:
        try:
            req = self._requests.get(timeout=timeout) if timeout else self._requests.get_nowait()
        except queue.Empty:
            return False
        try:
            if req.kind is RequestKind.CATALOG:
                self._results.put(("catalog", req, self.client.list_models()))
            else:
                self._results.put(("model_info", req, self.client.show_model(req.name)))
        except Exception as exc:
            self._results.put(("error", req, exc))
        return True

    def _worker_loop(self) -> None:
        while not self._closed.is_set():
            self.process_next(timeout=0.1)

    def drain(self, directory: "SessionDirectory") -> int:
        """Apply finished fetches to the sessions. Call from the UI thread."""
        applied = 0
        while True:
            try:
                kind, req, payload = self._results.get_nowait()
            except queue.Empty:
                break

            with self._lock:
                self._in_flight.discard(req)
                if kind == "error":
                    self._failed_until[req] = self._clock() + self.retry_interval
                else:
                    self._failed_until.pop(req, None)

            if kind == "catalog":
                self.catalog = list(payload)
                logger.info(f"Model list refreshed: {len(self.catalog)} model(s)")
                for session in directory.sessions:
                    if not session.picker.has_selection:
                        session.picker.select_best_model(self.catalog)
            elif kind == "model_info":
                for session in directory.sessions:
                    session.picker.on_new_model_info(req.name, payload)
            else:
                logger.warning(f"Fetching {req} failed: {payload}")
                if req.kind is RequestKind.CATALOG and self.catalog is None:
                    self.catalog = []
            applied += 1
        return applied

    def close(self) -> None:
        self._closed.set()
        if self._worker is not None:
            self._worker.join(timeout=1.0)
            self._worker = None
