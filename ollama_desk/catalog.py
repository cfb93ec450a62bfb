from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import humanize

from .constants import NO_MODELS_HINT, SHORT_NAME_FALLBACK
from .settings import GenerationSettings

logger = logging.getLogger(__name__)


@dataclass
class LocalModel:
    """One entry of the server's model list."""

    name: str
    modified_at: str = ""
    size: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "LocalModel":
        return cls(
            name=str(data.get("name") or data.get("model") or ""),
            modified_at=str(data.get("modified_at") or ""),
            size=int(data.get("size") or 0),
        )


@dataclass
class ModelInfo:
    license: str = ""
    modelfile: str = ""
    parameters: str = ""
    template: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ModelInfo":
        return cls(
            license=str(data.get("license") or ""),
            modelfile=str(data.get("modelfile") or ""),
            parameters=str(data.get("parameters") or ""),
            template=str(data.get("template") or ""),
        )

    def sections(self) -> List[Tuple[str, str]]:
        """Return (heading, text) pairs for the fields that carry any text."""
        blocks = [
            ("License", self.license),
            ("Modelfile", self.modelfile),
            ("Parameters", self.parameters),
            ("Template", self.template),
        ]
        return [(heading, text) for heading, text in blocks if text]


class RequestKind(str, Enum):
    CATALOG = "catalog"
    MODEL_INFO = "model_info"


@dataclass(frozen=True)
class FetchRequest:
    kind: RequestKind
    name: str = ""

    @classmethod
    def catalog(cls) -> "FetchRequest":
        return cls(RequestKind.CATALOG)

    @classmethod
    def model_info(cls, name: str) -> "FetchRequest":
        return cls(RequestKind.MODEL_INFO, name)

    def __str__(self) -> str:
        return f"{self.kind.value}({self.name})" if self.name else self.kind.value


Fetch = Callable[[FetchRequest], None]


def make_short_name(name: str) -> str:
    """Convert a model name into a short display name.

    nous-hermes2:latest -> Nous
    gemma:latest -> Gemma
    starling-lm:7b-beta-q5_K_M -> Starling
    """
    prefix = []
    for char in name:
        if not char.isalnum():
            break
        prefix.append(char)
    if not prefix:
        return SHORT_NAME_FALLBACK
    return prefix[0].upper() + "".join(prefix[1:])


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def relative_time(modified_at: str, now: Optional[datetime] = None) -> str:
    try:
        then = parse_timestamp(modified_at)
    except ValueError as exc:
        return str(exc)
    current = now or datetime.now(timezone.utc)
    return humanize.naturaltime(current - then)


def format_size(size: int) -> str:
    return humanize.naturalsize(size)


@dataclass
class SelectedModel:
    name: str = ""
    short_name: str = ""
    modified_ago: str = ""
    modified_at: str = ""
    size: int = 0

    @classmethod
    def from_local(cls, model: LocalModel, now: Optional[datetime] = None) -> "SelectedModel":
        return cls(
            name=model.name,
            short_name=make_short_name(model.name),
            modified_ago=relative_time(model.modified_at, now),
            modified_at=model.modified_at,
            size=model.size,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "short_name": self.short_name,
            "modified_ago": self.modified_ago,
            "modified_at": self.modified_at,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SelectedModel":
        if not isinstance(data, dict):
            return cls()
        name = str(data.get("name") or "")
        try:
            size = int(data.get("size") or 0)
        except (TypeError, ValueError, OverflowError):
            size = 0
        return cls(
            name=name,
            short_name=str(data.get("short_name") or (make_short_name(name) if name else "")),
            modified_ago=str(data.get("modified_ago") or ""),
            modified_at=str(data.get("modified_at") or ""),
            size=size,
        )


@dataclass
class CatalogEntry:
    name: str
    size_label: str
    selected: bool


@dataclass
class PickerView:
    """Everything the model tab needs to draw for one tick."""

    catalog_loading: bool = False
    entries: List[CatalogEntry] = field(default_factory=list)
    empty_hint: Optional[str] = None
    has_selection: bool = False
    selected_name: str = ""
    size_label: str = ""
    size_tooltip: str = ""
    modified_ago: str = ""
    modified_at: str = ""
    info_loading: bool = False
    info_sections: List[Tuple[str, str]] = field(default_factory=list)


class ModelPicker:
    """Selected model, its lazily fetched metadata, and the generation settings."""

    def __init__(
        self,
        selected: Optional[SelectedModel] = None,
        settings: Optional[GenerationSettings] = None,
    ) -> None:
        self.selected = selected or SelectedModel()
        self.info: Optional[ModelInfo] = None
        self.settings = settings or GenerationSettings()

    @property
    def has_selection(self) -> bool:
        return bool(self.selected.name)

    def show(self, catalog: Optional[Sequence[LocalModel]], fetch: Fetch) -> PickerView:
        view = PickerView(catalog_loading=catalog is None)
        if catalog is not None:
            view.entries = [
                CatalogEntry(model.name, format_size(model.size), model.name == self.selected.name)
                for model in catalog
            ]
            if not catalog:
                view.empty_hint = NO_MODELS_HINT

        if not self.has_selection:
            return view

        view.has_selection = True
        view.selected_name = self.selected.name
        view.size_label = format_size(self.selected.size)
        view.size_tooltip = f"{self.selected.size} bytes"
        view.modified_ago = self.selected.modified_ago
        view.modified_at = self.selected.modified_at

        if self.info is None:
            fetch(FetchRequest.model_info(self.selected.name))
            view.info_loading = True
        else:
            view.info_sections = self.info.sections()
        return view

    def select(self, model: LocalModel) -> None:
        self.selected = SelectedModel.from_local(model)
        self.info = None

    def refresh(self, fetch: Fetch) -> None:
        fetch(FetchRequest.catalog())

    def on_new_model_info(self, name: str, info: ModelInfo) -> None:
        if self.selected.name == name:
            self.info = info

    def select_best_model(self, catalog: Sequence[LocalModel]) -> None:
        best: Optional[LocalModel] = None
        for model in catalog:
            if best is None or model.size > best.size:
                best = model
        if best is None:
            return
        self.select(best)
        if self.has_selection:
            logger.info(f"Subjectively selected best model: {self.selected.name}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected.to_dict(),
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ModelPicker":
        if not isinstance(data, dict):
            return cls()
        return cls(
            selected=SelectedModel.from_dict(data.get("selected")),
            settings=GenerationSettings.from_dict(data.get("settings")),
        )
