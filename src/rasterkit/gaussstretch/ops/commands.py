# ops/commands.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Sequence


class PresetError(ValueError):
    """Missing or malformed tool parameters."""


# -----------------------------------------------------------------------------
# Preset / Command metadata models
# -----------------------------------------------------------------------------

@dataclass
class PresetSpec:
    """
    Describes one preset key for a command.
    """
    key: str
    type: str                    # "float" | "int" | "path"
    default: Any = None
    min: float | None = None
    min_exclusive: bool = False  # True: value must be strictly greater than min

    desc: str = ""
    optional: bool = True        # if False, the key must be supplied

    def coerce(self, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            if not self.optional:
                raise PresetError(f"Parameter '{self.key}' has not been set.")
            return self.default

        try:
            if self.type == "float":
                v = float(value)
                if not math.isfinite(v):
                    raise ValueError(value)
            elif self.type == "int":
                if isinstance(value, float) and not value.is_integer():
                    raise ValueError(value)
                v = int(str(value).strip()) if isinstance(value, str) else int(value)
            else:
                v = str(value)
        except (TypeError, ValueError):
            raise PresetError(f"Parameter '{self.key}' must be {self.type}, got {value!r}.") from None

        if self.min is not None:
            if self.min_exclusive and not v > self.min:
                raise PresetError(f"Parameter '{self.key}' must be > {self.min} (got {v}).")
            if not self.min_exclusive and v < self.min:
                raise PresetError(f"Parameter '{self.key}' must be >= {self.min} (got {v}).")
        return v


@dataclass
class CommandSpec:
    """
    One tool command.
    """
    id: str
    name: str = ""
    description: str = ""
    group: str = "General"

    presets: list[PresetSpec] = field(default_factory=list)

    def preset_keys(self) -> list[str]:
        return [p.key for p in self.presets]

    def preset(self, key: str) -> PresetSpec:
        return next(p for p in self.presets if p.key == key)


# -----------------------------------------------------------------------------
# Preset helpers
# -----------------------------------------------------------------------------

def validate_preset(spec: CommandSpec, preset: dict | None) -> dict:
    """
    Coerce and range-check a preset against `spec`, filling defaults.
    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    preset = dict(preset or {})
    unknown = sorted(set(preset) - set(spec.preset_keys()))
    if unknown:
        raise PresetError(f"Unknown parameter(s) for {spec.id}: {', '.join(unknown)}")
    return {p.key: p.coerce(preset.get(p.key)) for p in spec.presets}


def preset_from_args(spec: CommandSpec, args: Sequence[str] | None) -> dict:
    """
    Map a positional argument list onto the command's presets, in declaration
    order (input, output, cutoff, bins, ...).
    """
    if not args:
        raise PresetError("Plugin parameters have not been set.")
    keys: List[str] = spec.preset_keys()
    if len(args) > len(keys):
        raise PresetError(f"Too many arguments for {spec.id}: expected at most {len(keys)}.")
    return {k: v for k, v in zip(keys, args)}


# -----------------------------------------------------------------------------
# The command
# -----------------------------------------------------------------------------

GAUSSIAN_STRETCH = CommandSpec(
    id="gaussian_stretch",
    name="Gaussian Contrast Stretch",
    description="Performs a Gaussian contrast stretch on an input image.",
    group="ImageEnhancement",
    presets=[
        PresetSpec("input", "path", optional=False,
                   desc="Input raster path (.fits, .tif, .npy)"),
        PresetSpec("output", "path", optional=False,
                   desc="Output raster path; format follows the extension"),
        PresetSpec("cutoff_sd", "float", default=3.0, min=0.0, min_exclusive=True,
                   desc="Tail cutoff in standard deviations"),
        PresetSpec("num_output_bins", "int", default=1024, min=2,
                   desc="Number of output bins"),
        PresetSpec("num_bins", "int", default=50000, min=1,
                   desc="Empirical histogram resolution"),
        PresetSpec("chunk_rows", "int", default=256, min=1,
                   desc="Rows per processing block"),
    ],
)
