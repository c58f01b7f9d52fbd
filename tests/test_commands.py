import pytest

from rasterkit.gaussstretch.ops.commands import (
    GAUSSIAN_STRETCH,
    PresetError,
    PresetSpec,
    preset_from_args,
    validate_preset,
)


def test_tool_metadata():
    assert GAUSSIAN_STRETCH.name == "Gaussian Contrast Stretch"
    assert GAUSSIAN_STRETCH.group == "ImageEnhancement"
    assert GAUSSIAN_STRETCH.preset_keys() == [
        "input", "output", "cutoff_sd", "num_output_bins", "num_bins", "chunk_rows",
    ]
    assert GAUSSIAN_STRETCH.preset("num_output_bins").default == 1024


def test_validate_fills_defaults():
    p = validate_preset(GAUSSIAN_STRETCH, {"input": "a.tif", "output": "b.tif"})
    assert p == {"input": "a.tif", "output": "b.tif", "cutoff_sd": 3.0,
                 "num_output_bins": 1024, "num_bins": 50000, "chunk_rows": 256}


def test_validate_requires_paths():
    with pytest.raises(PresetError, match="'input' has not been set"):
        validate_preset(GAUSSIAN_STRETCH, {"output": "b.tif"})
    with pytest.raises(PresetError, match="'output' has not been set"):
        validate_preset(GAUSSIAN_STRETCH, {"input": "a.tif", "output": "  "})


def test_validate_rejects_unknown_keys():
    with pytest.raises(PresetError, match="cutof"):
        validate_preset(GAUSSIAN_STRETCH, {"input": "a", "output": "b", "cutof": 2})


@pytest.mark.parametrize("spec,value,expected", [
    (PresetSpec("x", "float"), "2.5", 2.5),
    (PresetSpec("x", "int"), "17", 17),
    (PresetSpec("x", "int"), 4.0, 4),
    (PresetSpec("x", "path"), 12, "12"),
    (PresetSpec("x", "int", default=9), None, 9),
])
def test_coerce(spec, value, expected):
    assert spec.coerce(value) == expected


@pytest.mark.parametrize("spec,value", [
    (PresetSpec("x", "float"), "nan"),
    (PresetSpec("x", "float"), "inf"),
    (PresetSpec("x", "int"), 2.5),
    (PresetSpec("x", "int"), "2.5"),
    (PresetSpec("x", "float", min=0.0, min_exclusive=True), 0.0),
    (PresetSpec("x", "int", min=2), 1),
])
def test_coerce_rejects(spec, value):
    with pytest.raises(PresetError):
        spec.coerce(value)


def test_positional_arguments_follow_declaration_order():
    p = preset_from_args(GAUSSIAN_STRETCH, ["in.fits", "out.fits", "2.5", "255"])
    assert p == {"input": "in.fits", "output": "out.fits",
                 "cutoff_sd": "2.5", "num_output_bins": "255"}


def test_positional_arguments_errors():
    with pytest.raises(PresetError, match="Plugin parameters have not been set."):
        preset_from_args(GAUSSIAN_STRETCH, [])
    with pytest.raises(PresetError, match="Too many"):
        preset_from_args(GAUSSIAN_STRETCH, ["a"] * 7)
