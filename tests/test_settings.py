import pytest

from ollama_desk.settings import (
    PARAMETER_MAP,
    PARAMETERS,
    GenerationSettings,
    Mirostat,
    StopSequenceEditor,
    ToggleEditor,
)


def test_empty_settings_produce_no_options():
    assert GenerationSettings().to_options().to_payload() == {}
    assert GenerationSettings().is_empty()


@pytest.mark.parametrize("spec", PARAMETERS, ids=lambda spec: spec.name)
def test_single_parameter_maps_to_its_own_field(spec):
    settings = GenerationSettings()
    settings.set(spec.name, spec.default)

    payload = settings.to_options().to_payload()

    assert payload == {spec.name: int(spec.default) if spec.name == "mirostat" else spec.default}


def test_fields_do_not_interfere():
    settings = GenerationSettings(temperature=0.5)
    assert settings.to_options().temperature == 0.5

    settings.set("top_k", 12)
    settings.set("seed", -7)
    settings.set("mirostat", Mirostat.MIROSTAT_2)
    settings.stop = ["</s>"]
    options = settings.to_options()

    assert options.temperature == 0.5
    assert options.top_k == 12
    assert options.seed == -7
    assert options.mirostat == 2
    assert options.stop == ["</s>"]
    assert options.num_ctx is None
    assert "num_ctx" not in options.to_payload()


def test_options_stop_list_is_a_copy():
    settings = GenerationSettings(stop=["a"])
    options = settings.to_options()
    options.stop.append("b")
    assert settings.stop == ["a"]


def test_set_clamps_to_type_range():
    settings = GenerationSettings()
    settings.set("top_k", -5)
    settings.set("seed", 2**40)
    settings.set("num_ctx", 4096.0)

    assert settings.top_k == 0
    assert settings.seed == 2**31 - 1
    assert settings.num_ctx == 4096
    assert isinstance(settings.num_ctx, int)


def test_toggle_editor_seeds_default_and_clears():
    settings = GenerationSettings()
    editor = ToggleEditor(settings, PARAMETER_MAP["temperature"])
    assert not editor.enabled
    assert editor.display_value == 0.8

    editor.set_enabled(True)
    assert settings.temperature == 0.8

    editor.set_value(1.3)
    editor.set_enabled(True)
    assert settings.temperature == 1.3

    editor.set_enabled(False)
    assert settings.temperature is None


def test_toggle_editor_ignores_edits_while_disabled():
    settings = GenerationSettings()
    editor = ToggleEditor(settings, PARAMETER_MAP["num_ctx"])

    editor.set_value(8192)
    editor.snap_max()
    editor.nudge(3)

    assert settings.num_ctx is None


def test_toggle_editor_snaps_and_resets():
    settings = GenerationSettings()
    ctx = ToggleEditor(settings, PARAMETER_MAP["num_ctx"])
    predict = ToggleEditor(settings, PARAMETER_MAP["num_predict"])
    ctx.set_enabled(True)
    predict.set_enabled(True)

    ctx.snap_max()
    predict.snap_min()
    assert settings.num_ctx == 2**32 - 1
    assert settings.num_predict == -(2**31)

    ctx.snap_min()
    assert settings.num_ctx == 0

    ctx.reset()
    assert settings.num_ctx is None
    assert not ctx.enabled
    assert settings.num_predict == -(2**31)


def test_toggle_editor_nudges_by_step():
    settings = GenerationSettings()
    editor = ToggleEditor(settings, PARAMETER_MAP["top_p"])
    editor.set_enabled(True)
    editor.nudge(2)
    assert settings.top_p == pytest.approx(0.92)


def test_mirostat_editor_stays_within_choices():
    settings = GenerationSettings()
    editor = ToggleEditor(settings, PARAMETER_MAP["mirostat"])
    editor.set_enabled(True)
    assert settings.mirostat is Mirostat.DISABLED

    editor.nudge(5)
    assert settings.mirostat is Mirostat.MIROSTAT_2
    editor.snap_min()
    assert settings.mirostat is Mirostat.DISABLED
    assert Mirostat.MIROSTAT_2.label == "Mirostat 2.0"


def test_stop_sequence_editor():
    settings = GenerationSettings()
    editor = StopSequenceEditor(settings)

    editor.add("ignored")
    assert settings.stop is None

    editor.set_enabled(True)
    assert settings.stop == []
    assert settings.to_options().to_payload() == {"stop": []}

    editor.add()
    editor.add("User:")
    editor.update(0, "###")
    assert editor.items == ["###", "User:"]

    editor.remove(0)
    assert editor.items == ["User:"]

    editor.clear()
    assert settings.stop == []
    assert editor.enabled

    editor.set_enabled(False)
    assert settings.stop is None


def test_from_dict_skips_unknown_and_invalid_fields():
    data = {
        "temperature": 0.3,
        "top_k": "many",
        "stop": "not-a-list",
        "mirostat": 1,
        "future_option": True,
    }

    settings = GenerationSettings.from_dict(data)

    assert settings.temperature == 0.3
    assert settings.top_k is None
    assert settings.stop is None
    assert settings.mirostat is Mirostat.MIROSTAT


def test_to_dict_omits_unset_fields():
    settings = GenerationSettings(num_gpu=2, stop=["\n\n"])
    assert settings.to_dict() == {"num_gpu": 2, "stop": ["\n\n"]}
    assert GenerationSettings.from_dict(settings.to_dict()) == settings
    assert GenerationSettings.from_dict(None) == GenerationSettings()


def test_typed_text_is_parsed_or_ignored():
    settings = GenerationSettings()
    ctx = ToggleEditor(settings, PARAMETER_MAP["num_ctx"])
    temperature = ToggleEditor(settings, PARAMETER_MAP["temperature"])
    ctx.set_enabled(True)
    temperature.set_enabled(True)

    assert ctx.set_text("4096")
    assert settings.num_ctx == 4096
    assert not ctx.set_text("1e400")
    assert not ctx.set_text("lots")
    assert settings.num_ctx == 4096

    assert temperature.set_text("1e400")
    assert settings.temperature == PARAMETER_MAP["temperature"].maximum


def test_non_finite_values_are_rejected_for_integer_kinds():
    with pytest.raises(ValueError):
        PARAMETER_MAP["seed"].coerce(float("inf"))
    with pytest.raises(ValueError):
        PARAMETER_MAP["mirostat"].coerce(float("nan"))

    settings = GenerationSettings.from_dict({"top_k": float("inf"), "top_p": 0.5})
    assert settings.top_k is None
    assert settings.top_p == 0.5
