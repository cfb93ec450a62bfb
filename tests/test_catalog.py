from datetime import datetime, timezone

import pytest

from ollama_desk.catalog import (
    FetchRequest,
    LocalModel,
    ModelInfo,
    ModelPicker,
    RequestKind,
    SelectedModel,
    make_short_name,
    relative_time,
)
from ollama_desk.constants import NO_MODELS_HINT, SHORT_NAME_FALLBACK


@pytest.mark.parametrize(
    "name, expected",
    [
        ("nous-hermes2:latest", "Nous"),
        ("gemma:latest", "Gemma"),
        ("starling-lm:7b-beta-q5_K_M", "Starling"),
        ("llama3", "Llama3"),
        (":latest", SHORT_NAME_FALLBACK),
        ("-odd", SHORT_NAME_FALLBACK),
    ],
)
def test_make_short_name(name, expected):
    assert make_short_name(name) == expected


def test_relative_time_formats_past_timestamp():
    now = datetime(2024, 1, 4, tzinfo=timezone.utc)
    assert relative_time("2024-01-01T00:00:00Z", now) == "3 days ago"


def test_relative_time_falls_back_to_parse_error():
    with pytest.raises(ValueError) as exc_info:
        datetime.fromisoformat("yesterday-ish")

    assert relative_time("yesterday-ish") == str(exc_info.value)


def test_selected_model_from_local():
    model = LocalModel("gemma:latest", "not a timestamp", 1234)
    selected = SelectedModel.from_local(model)

    assert selected.name == "gemma:latest"
    assert selected.short_name == "Gemma"
    assert selected.modified_at == "not a timestamp"
    assert selected.modified_ago
    assert selected.size == 1234


def test_api_records_parse_server_payloads():
    model = LocalModel.from_api({"name": "gemma:latest", "modified_at": "2024-01-01T00:00:00Z", "size": 42, "digest": "abc"})
    info = ModelInfo.from_api({"license": "MIT", "template": "{{ .Prompt }}", "details": {}})

    assert model == LocalModel("gemma:latest", "2024-01-01T00:00:00Z", 42)
    assert info.sections() == [("License", "MIT"), ("Template", "{{ .Prompt }}")]


def test_select_best_model_prefers_first_largest(catalog):
    picker = ModelPicker()
    picker.select_best_model(catalog)
    assert picker.selected.name == "nous-hermes2:latest"


def test_select_best_model_ignores_empty_catalog():
    picker = ModelPicker()
    picker.select_best_model([])
    assert not picker.has_selection


def test_reselecting_same_model_clears_info(catalog):
    picker = ModelPicker()
    picker.select(catalog[0])
    picker.on_new_model_info("gemma:latest", ModelInfo(license="MIT"))
    assert picker.info is not None

    picker.select(catalog[0])

    assert picker.info is None


def test_stale_model_info_is_discarded(catalog):
    picker = ModelPicker()
    picker.select(catalog[1])
    info = ModelInfo(template="{{ .Prompt }}")
    picker.on_new_model_info("nous-hermes2:latest", info)

    picker.on_new_model_info("gemma:latest", ModelInfo(license="other"))

    assert picker.info is info


def test_show_without_catalog_reports_loading():
    requests = []
    view = ModelPicker().show(None, requests.append)

    assert view.catalog_loading
    assert view.entries == []
    assert not view.has_selection
    assert requests == []


def test_show_empty_catalog_gives_hint():
    view = ModelPicker().show([], lambda req: None)

    assert not view.catalog_loading
    assert view.empty_hint == NO_MODELS_HINT


def test_show_requests_info_on_every_call_until_it_arrives(catalog):
    requests = []
    picker = ModelPicker()
    picker.select(catalog[0])

    first = picker.show(catalog, requests.append)
    picker.show(catalog, requests.append)

    assert first.info_loading
    assert requests == [FetchRequest.model_info("gemma:latest")] * 2
    assert requests[0].kind is RequestKind.MODEL_INFO

    picker.on_new_model_info("gemma:latest", ModelInfo(license="MIT", modelfile="FROM gemma"))
    view = picker.show(catalog, requests.append)

    assert len(requests) == 2
    assert not view.info_loading
    assert view.info_sections == [("License", "MIT"), ("Modelfile", "FROM gemma")]


def test_show_marks_selected_entry(catalog):
    picker = ModelPicker()
    picker.select(catalog[2])
    view = picker.show(catalog, lambda req: None)

    assert [entry.selected for entry in view.entries] == [False, False, True]
    assert view.selected_name == "starling-lm:7b-beta-q5_K_M"
    assert view.size_tooltip == "50 bytes"


def test_restored_selection_fetches_info_before_catalog_arrives():
    requests = []
    picker = ModelPicker(selected=SelectedModel(name="gemma:latest", short_name="Gemma"))

    view = picker.show(None, requests.append)

    assert view.catalog_loading
    assert view.info_loading
    assert requests == [FetchRequest.model_info("gemma:latest")]


def test_refresh_only_requests_catalog(catalog):
    requests = []
    picker = ModelPicker()
    picker.select(catalog[0])
    picker.refresh(requests.append)

    assert requests == [FetchRequest.catalog()]
    assert picker.selected.name == "gemma:latest"


def test_picker_state_round_trip_skips_info(catalog):
    picker = ModelPicker()
    picker.select(catalog[0])
    picker.settings.temperature = 0.2
    picker.on_new_model_info("gemma:latest", ModelInfo(license="MIT"))

    restored = ModelPicker.from_dict(picker.to_dict())

    assert restored.selected == picker.selected
    assert restored.settings.temperature == 0.2
    assert restored.info is None


def test_picker_from_partial_record_uses_defaults():
    restored = ModelPicker.from_dict({"selected": {"name": "gemma:latest", "size": "oops"}, "extra": 1})

    assert restored.selected.name == "gemma:latest"
    assert restored.selected.short_name == "Gemma"
    assert restored.selected.size == 0
    assert restored.settings.is_empty()
