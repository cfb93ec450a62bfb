from __future__ import annotations

import logging
import os
import queue
import subprocess
import sys
import tempfile
import threading
from pathlib import Path
from typing import ClassVar, Optional, Tuple

import numpy as np
import soundfile as sf
import torch
from huggingface_hub import snapshot_download
from kokoro import KModel, KPipeline

try:
    import sounddevice as sd  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    sd = None

try:
    import simpleaudio as sa  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    sa = None

from .constants import DEFAULT_VOICE, SAMPLE_RATE, STATE_ROOT
from .exceptions import SpeechDeviceError

logger = logging.getLogger(__name__)

DEFAULT_KOKORO_REPO = "hexgrad/Kokoro-82M"
DEFAULT_MODEL_DIR = Path(STATE_ROOT) / "kokoro-82m"
ENV_MODEL_DIR = "KOKORO_MODEL_DIR"
ENV_ALLOW_DOWNLOAD = "KOKORO_ALLOW_DOWNLOAD"
WEIGHTS_FILE = "kokoro-v1_0.pth"


def _download_allowed() -> bool:
    return os.getenv(ENV_ALLOW_DOWNLOAD, "1") not in {"0", "false", "False", "no", "off"}


def _weights_present(model_dir: Path) -> bool:
    voices_dir = model_dir / "voices"
    return (
        (model_dir / "config.json").exists()
        and (model_dir / WEIGHTS_FILE).exists()
        and voices_dir.is_dir()
        and any(voices_dir.glob("*.pt"))
    )


def ensure_kokoro_weights(
    target_dir: Optional[Path | str] = None,
    *,
    repo_id: str = DEFAULT_KOKORO_REPO,
    allow_download: Optional[bool] = None,
) -> Path:
    """Return the Kokoro snapshot directory, downloading it first if needed.

    The location defaults to ``~/.cache/ollama-desk/kokoro-82m`` and can be
    moved with KOKORO_MODEL_DIR. KOKORO_ALLOW_DOWNLOAD=0 turns the download off.
    """
    model_dir = Path(target_dir or os.getenv(ENV_MODEL_DIR, DEFAULT_MODEL_DIR)).expanduser().resolve()
    if _weights_present(model_dir):
        return model_dir

    if not (_download_allowed() if allow_download is None else allow_download):
        raise SpeechDeviceError(
            f"Kokoro weights not found at {model_dir} and downloads are disabled via {ENV_ALLOW_DOWNLOAD}."
        )

    model_dir.mkdir(parents=True, exist_ok=True)
    try:
        snapshot_download(repo_id=repo_id, local_dir=model_dir)
    except Exception as exc:
        raise SpeechDeviceError(f"Could not download Kokoro weights from {repo_id}: {exc}") from exc

    if not _weights_present(model_dir):
        raise SpeechDeviceError(
            f"Downloaded {repo_id} to {model_dir}, but config.json, {WEIGHTS_FILE} or voices/*.pt is missing."
        )
    return model_dir


class KokoroSpeaker:
    """Speech device that synthesizes with Kokoro and plays through the sound card.

    Synthesis and playback run on their own threads. ``is_speaking`` stays true
    from the moment text is queued until its audio has finished playing.
    """

    _threads_configured: ClassVar[bool] = False

    def __init__(
        self,
        voice: str = DEFAULT_VOICE,
        speed: float = 1.0,
        lang_code: str = "a",
        model_dir: Optional[Path] = None,
    ) -> None:
        self._configure_threads()

        self.model_dir = ensure_kokoro_weights(model_dir)
        self.voice = voice
        self.speed = speed
        model = KModel(config=str(self.model_dir / "config.json"), model=str(self.model_dir / WEIGHTS_FILE))
        self._pipeline = KPipeline(lang_code=lang_code, model=model)

        self._text_queue: "queue.Queue[Tuple[int, str]]" = queue.Queue()
        self._play_queue: "queue.Queue[Tuple[int, np.ndarray]]" = queue.Queue(maxsize=4)
        self._closed = threading.Event()
        self._state_lock = threading.Lock()
        self._epoch = 0
        self._pending = 0
        self._first_error: Optional[Exception] = None

        self._generator_thread = threading.Thread(target=self._generator_loop, daemon=True)
        self._playback_thread = threading.Thread(target=self._playback_loop, daemon=True)
        self._generator_thread.start()
        self._playback_thread.start()

    def _voice_path(self) -> str:
        filename = self.voice if self.voice.endswith(".pt") else f"{self.voice}.pt"
        path = self.model_dir / "voices" / filename
        if not path.exists():
            raise SpeechDeviceError(f"Voice '{self.voice}' not found at {path}.")
        return str(path)

    # ------------------------------------------------------------------
    # Device interface

    def is_speaking(self) -> bool:
        with self._state_lock:
            if self._first_error is not None:
                raise SpeechDeviceError(str(self._first_error)) from self._first_error
            return self._pending > 0

    def speak(self, text: str) -> None:
        if not text.strip():
            return
        with self._state_lock:
            if self._first_error is not None:
                raise SpeechDeviceError(str(self._first_error)) from self._first_error
            self._pending += 1
            epoch = self._epoch
        self._text_queue.put((epoch, text))

    def stop(self) -> None:
        with self._state_lock:
            self._epoch += 1
            self._pending = 0
            self._first_error = None
        self._flush_queues()
        if sd is not None:
            try:
                sd.stop()
            except Exception as exc:
                logger.debug(f"sounddevice stop failed: {exc}")

    def close(self) -> None:
        self.stop()
        self._closed.set()

    # ------------------------------------------------------------------
    # Workers

    def _finish(self, epoch: int) -> None:
        with self._state_lock:
            if epoch == self._epoch and self._pending > 0:
                self._pending -= 1

    def _is_current(self, epoch: int) -> bool:
        with self._state_lock:
            return epoch == self._epoch

    def _generator_loop(self) -> None:
        while not self._closed.is_set():
            try:
                epoch, text = self._text_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            if not self._is_current(epoch):
                continue
            try:
                buffers = [
                    np.asarray(audio, dtype=np.float32)
                    for _, _, audio in self._pipeline(
                        text, voice=self._voice_path(), speed=self.speed, split_pattern=r"\n+"
                    )
                    if audio is not None
                ]
            except Exception as exc:
                self._record_error(exc, epoch)
                continue
            if not buffers:
                self._finish(epoch)
                continue
            self._put_play_item(epoch, np.concatenate(buffers, axis=0))

    def _put_play_item(self, epoch: int, audio: np.ndarray) -> None:
        while not self._closed.is_set():
            try:
                self._play_queue.put((epoch, audio), timeout=0.1)
                return
            except queue.Full:
                if not self._is_current(epoch):
                    return

    def _playback_loop(self) -> None:
        while not self._closed.is_set():
            try:
                epoch, audio = self._play_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            if not self._is_current(epoch):
                continue
            try:
                self._play_buffer(audio)
            except Exception as exc:
                self._record_error(exc, epoch)
                continue
            self._finish(epoch)

    def _record_error(self, exc: Exception, epoch: int) -> None:
        logger.error(f"Speech worker failed: {exc}")
        with self._state_lock:
            if epoch != self._epoch:
                return
            if self._first_error is None:
                self._first_error = exc
            self._pending = 0

    def _flush_queues(self) -> None:
        for pending in (self._text_queue, self._play_queue):
            while True:
                try:
                    pending.get_nowait()
                except queue.Empty:
                    break

    # ------------------------------------------------------------------
    # Playback backends

    @staticmethod
    def _play_buffer(audio: np.ndarray) -> None:
        if sd is not None:
            sd.play(audio, SAMPLE_RATE)
            sd.wait()
            return

        if sa is not None:
            clipped = np.clip(audio, -1.0, 1.0)
            channels = 1 if clipped.ndim == 1 else clipped.shape[1]
            play_obj = sa.play_buffer(np.int16(clipped * 32767), channels, 2, SAMPLE_RATE)
            play_obj.wait_done()
            return

        KokoroSpeaker._play_via_tempfile(audio)

    @staticmethod
    def _play_via_tempfile(audio: np.ndarray) -> None:
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as tmp_file:
            file_path = Path(tmp_file.name)
            sf.write(file_path, audio, SAMPLE_RATE)

        if sys.platform == "darwin":
            cmd = ["afplay", str(file_path)]
        elif sys.platform.startswith("linux"):
            cmd = ["aplay", "-q", str(file_path)]
        elif sys.platform.startswith("win"):
            cmd = ["powershell", "-NoProfile", "-Command", f"(New-Object Media.SoundPlayer '{file_path}').PlaySync();"]
        else:
            file_path.unlink(missing_ok=True)
            raise SpeechDeviceError(f"No audio playback backend for platform {sys.platform}.")

        try:
            subprocess.run(cmd, check=True)
        finally:
            file_path.unlink(missing_ok=True)

    @classmethod
    def _configure_threads(cls) -> None:
        if cls._threads_configured:
            return
        threads: Optional[int] = None
        threads_env = os.getenv("KOKORO_NUM_THREADS")
        if threads_env and threads_env.isdigit() and int(threads_env) > 0:
            threads = int(threads_env)
        if threads is None:
            cpu = os.cpu_count() or 2
            threads = max(1, min(cpu - 1, 4))
        try:
            torch.set_num_threads(threads)
            torch.set_num_interop_threads(max(1, min(threads, 2)))
        except RuntimeError:
            pass
        os.environ.setdefault("OMP_NUM_THREADS", str(threads))
        cls._threads_configured = True
