from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, fields
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Mirostat(IntEnum):
    DISABLED = 0
    MIROSTAT = 1
    MIROSTAT_2 = 2

    @property
    def label(self) -> str:
        return {
            Mirostat.DISABLED: "Disabled",
            Mirostat.MIROSTAT: "Mirostat",
            Mirostat.MIROSTAT_2: "Mirostat 2.0",
        }[self]


F32_MAX = 3.4028234663852886e38

KIND_BOUNDS: Dict[str, Tuple[Any, Any]] = {
    "u32": (0, 2**32 - 1),
    "i32": (-(2**31), 2**31 - 1),
    "f32": (-F32_MAX, F32_MAX),
    "mirostat": (Mirostat.DISABLED, Mirostat.MIROSTAT_2),
}


@dataclass(frozen=True)
class ParameterSpec:
    """Static description of one tunable generation parameter."""

    name: str
    label: str
    kind: str
    default: Any
    step: float
    doc: str

    @property
    def minimum(self) -> Any:
        return KIND_BOUNDS[self.kind][0]

    @property
    def maximum(self) -> Any:
        return KIND_BOUNDS[self.kind][1]

    def coerce(self, value: Any) -> Any:
        """Convert ``value`` into this parameter's type, clamped to its range."""
        if self.kind != "f32" and isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"{self.name} must be a finite number")
        if self.kind == "mirostat":
            return Mirostat(min(max(int(value), self.minimum), self.maximum))
        if self.kind == "f32":
            number = float(value)
            if number != number:
                raise ValueError(f"{self.name} cannot be NaN")
        else:
            if isinstance(value, float) and not value.is_integer():
                value = round(value)
            number = int(value)
        return min(max(number, self.minimum), self.maximum)


PARAMETERS: Tuple[ParameterSpec, ...] = (
    ParameterSpec(
        "mirostat", "Mirostat", "mirostat", Mirostat.DISABLED, 1,
        "Enable Mirostat sampling for controlling perplexity.",
    ),
    ParameterSpec(
        "mirostat_eta", "Mirostat eta", "f32", 0.1, 0.01,
        "Influences how quickly the algorithm responds to feedback from the generated text. "
        "A lower learning rate will result in slower adjustments, while a higher learning rate "
        "will make the algorithm more responsive.",
    ),
    ParameterSpec(
        "mirostat_tau", "Mirostat tau", "f32", 5.0, 0.01,
        "Controls the balance between coherence and diversity of the output. "
        "A lower value will result in more focused and coherent text.",
    ),
    ParameterSpec(
        "num_ctx", "Context Window", "u32", 2048, 1,
        "Sets the size of the context window used to generate the next token.",
    ),
    ParameterSpec(
        "num_gqa", "Number of GQA Groups", "u32", 8, 1,
        "The number of GQA groups in the transformer layer. "
        "Required for some models, for example it is 8 for llama2:70b.",
    ),
    ParameterSpec(
        "num_gpu", "GPU Layers", "u32", 1, 1,
        "The number of layers to send to the GPU(s). "
        "On macOS it defaults to 1 to enable metal support, 0 to disable.",
    ),
    ParameterSpec(
        "num_thread", "Number of Threads", "u32", 0, 1,
        "Sets the number of threads to use during computation. By default, Ollama will detect "
        "this for optimal performance. It is recommended to set this value to the number of "
        "physical CPU cores your system has.",
    ),
    ParameterSpec(
        "repeat_last_n", "Repeat Last N", "i32", 64, 1,
        "Sets how far back for the model to look back to prevent repetition. "
        "(0 = disabled, -1 = num_ctx)",
    ),
    ParameterSpec(
        "repeat_penalty", "Repeat Penalty", "f32", 1.1, 0.01,
        "Sets how strongly to penalize repetitions. A higher value (e.g., 1.5) will penalize "
        "repetitions more strongly, while a lower value (e.g., 0.9) will be more lenient.",
    ),
    ParameterSpec(
        "temperature", "Temperature", "f32", 0.8, 0.1,
        "The temperature of the model. Increasing the temperature will make the model answer "
        "more creatively.",
    ),
    ParameterSpec(
        "seed", "Seed", "i32", 0, 1,
        "Sets the random number seed to use for generation. Setting this to a specific number "
        "will make the model generate the same text for the same prompt.",
    ),
    ParameterSpec(
        "tfs_z", "Tail-Free Sampling Z", "f32", 1.0, 0.01,
        "Tail free sampling is used to reduce the impact of less probable tokens from the output. "
        "A higher value (e.g., 2.0) will reduce the impact more, while a value of 1.0 disables "
        "this setting.",
    ),
    ParameterSpec(
        "num_predict", "Number to Predict", "i32", 128, 1,
        "Maximum number of tokens to predict when generating text. "
        "(-1 = infinite generation, -2 = fill context)",
    ),
    ParameterSpec(
        "top_k", "Top K", "u32", 40, 1,
        "Reduces the probability of generating nonsense. A higher value (e.g. 100) will give "
        "more diverse answers, while a lower value (e.g. 10) will be more conservative.",
    ),
    ParameterSpec(
        "top_p", "Top P", "f32", 0.9, 0.01,
        "Works together with top-k. A higher value (e.g., 0.95) will lead to more diverse text, "
        "while a lower value (e.g., 0.5) will generate more focused and conservative text.",
    ),
)

PARAMETER_MAP: Dict[str, ParameterSpec] = {spec.name: spec for spec in PARAMETERS}

STOP_DOC = (
    "Sets the stop sequences to use. "
    "When this pattern is encountered the LLM will stop generating text and return."
)


@dataclass
class GenerationOptions:
    """Dense options record sent to the model server."""

    mirostat: Optional[int] = None
    mirostat_eta: Optional[float] = None
    mirostat_tau: Optional[float] = None
    num_ctx: Optional[int] = None
    num_gqa: Optional[int] = None
    num_gpu: Optional[int] = None
    num_thread: Optional[int] = None
    repeat_last_n: Optional[int] = None
    repeat_penalty: Optional[float] = None
    temperature: Optional[float] = None
    seed: Optional[int] = None
    stop: Optional[List[str]] = None
    tfs_z: Optional[float] = None
    num_predict: Optional[int] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class GenerationSettings:
    """Sparse user overrides; ``None`` leaves the server default in place."""

    mirostat: Optional[Mirostat] = None
    mirostat_eta: Optional[float] = None
    mirostat_tau: Optional[float] = None
    num_ctx: Optional[int] = None
    num_gqa: Optional[int] = None
    num_gpu: Optional[int] = None
    num_thread: Optional[int] = None
    repeat_last_n: Optional[int] = None
    repeat_penalty: Optional[float] = None
    temperature: Optional[float] = None
    seed: Optional[int] = None
    stop: Optional[List[str]] = None
    tfs_z: Optional[float] = None
    num_predict: Optional[int] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None

    def set(self, name: str, value: Any) -> None:
        if name == "stop":
            self.stop = None if value is None else [str(item) for item in value]
            return
        spec = PARAMETER_MAP[name]
        setattr(self, name, None if value is None else spec.coerce(value))

    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))

    def to_options(self) -> GenerationOptions:
        options = GenerationOptions()
        for spec in PARAMETERS:
            value = getattr(self, spec.name)
            if value is not None:
                setattr(options, spec.name, int(value) if spec.kind == "mirostat" else value)
        if self.stop is not None:
            options.stop = list(self.stop)
        return options

    def to_dict(self) -> Dict[str, Any]:
        return self.to_options().to_payload()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenerationSettings":
        settings = cls()
        if not isinstance(data, dict):
            return settings
        for name, value in data.items():
            if value is None or (name != "stop" and name not in PARAMETER_MAP):
                continue
            try:
                if name == "stop" and not isinstance(value, list):
                    raise ValueError("stop must be a list")
                settings.set(name, value)
            except (TypeError, ValueError, OverflowError) as exc:
                logger.warning(f"Ignoring stored setting {name}={value!r}: {exc}")
        return settings


class ToggleEditor:
    """Enable / seed-default / edit / snap / reset editing for one optional setting."""

    def __init__(self, settings: GenerationSettings, spec: ParameterSpec) -> None:
        self.settings = settings
        self.spec = spec

    @property
    def enabled(self) -> bool:
        return self.value is not None

    @property
    def value(self) -> Any:
        return getattr(self.settings, self.spec.name)

    @property
    def display_value(self) -> Any:
        value = self.value
        return self.spec.default if value is None else value

    def set_enabled(self, enabled: bool) -> None:
        if not enabled:
            self.settings.set(self.spec.name, None)
        elif self.value is None:
            self.settings.set(self.spec.name, self.spec.default)

    def set_value(self, value: Any) -> None:
        if self.enabled:
            self.settings.set(self.spec.name, value)

    def set_text(self, text: str) -> bool:
        """Apply typed input. Text that is not a usable number leaves the value alone."""
        try:
            self.set_value(float(text))
        except (ValueError, OverflowError):
            return False
        return True

    def nudge(self, steps: int) -> None:
        if self.enabled:
            self.settings.set(self.spec.name, round(self.value + steps * self.spec.step, 6))

    def snap_max(self) -> None:
        if self.enabled:
            self.settings.set(self.spec.name, self.spec.maximum)

    def snap_min(self) -> None:
        if self.enabled:
            self.settings.set(self.spec.name, self.spec.minimum)

    def reset(self) -> None:
        self.settings.set(self.spec.name, None)


class StopSequenceEditor:
    """Element-wise editing of the stop-sequence list behind the same enable gate."""

    def __init__(self, settings: GenerationSettings) -> None:
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.stop is not None

    @property
    def items(self) -> List[str]:
        return list(self.settings.stop or [])

    def set_enabled(self, enabled: bool) -> None:
        if not enabled:
            self.settings.stop = None
        elif self.settings.stop is None:
            self.settings.stop = []

    def add(self, text: str = "") -> None:
        if self.settings.stop is not None:
            self.settings.stop.append(text)

    def update(self, index: int, text: str) -> None:
        if self.settings.stop is not None and 0 <= index < len(self.settings.stop):
            self.settings.stop[index] = text

    def remove(self, index: int) -> None:
        if self.settings.stop is not None and 0 <= index < len(self.settings.stop):
            del self.settings.stop[index]

    def clear(self) -> None:
        if self.settings.stop is not None:
            self.settings.stop.clear()


def editors_for(settings: GenerationSettings) -> List[ToggleEditor]:
    return [ToggleEditor(settings, spec) for spec in PARAMETERS]


__all__ = [
    "GenerationOptions",
    "GenerationSettings",
    "Mirostat",
    "PARAMETERS",
    "PARAMETER_MAP",
    "ParameterSpec",
    "STOP_DOC",
    "StopSequenceEditor",
    "ToggleEditor",
    "editors_for",
]
