from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import numpy as np

from rasterkit.gaussstretch.imageops.stretch import (
    StretchCancelled,
    StretchConfigError,
    gaussian_stretch,
    gaussian_stretch_array,
    reference_cdf,
)
from rasterkit.gaussstretch.legacy.image_manager import (
    DEFAULT_NODATA,
    RasterFormatError,
    RasterReader,
    RasterWriter,
    raster_format,
)
from rasterkit.gaussstretch.memory_utils import DEFAULT_MEMMAP_THRESHOLD_MB, get_memory_usage_mb
from rasterkit.gaussstretch.ops.commands import GAUSSIAN_STRETCH, PresetError, validate_preset
from rasterkit.gaussstretch.tool_host import ToolHost

log = logging.getLogger(__name__)

TOOL_NAME = GAUSSIAN_STRETCH.name

MSG_NOT_SET = "Plugin parameters have not been set."
MSG_BAD_PARAMS = "One or more of the input parameters have not been set properly."
MSG_CANCELLED = "Operation cancelled."
MSG_OOM = "An out-of-memory error has occurred during operation."
MSG_ERROR = "An error has occurred during operation. See log file for details."


def _validated(preset: dict | None) -> dict:
    if not preset:
        raise PresetError(MSG_NOT_SET)
    p = validate_preset(GAUSSIAN_STRETCH, preset)
    try:
        raster_format(p["input"])
        raster_format(p["output"])
    except RasterFormatError as e:
        raise PresetError(str(e)) from None
    # reference construction doubles as the numeric check
    reference_cdf(p["num_output_bins"], p["cutoff_sd"])
    return p


def run_gaussian_stretch_on_array(
    img: np.ndarray,
    nodata: float,
    preset: dict | None = None,
    *,
    host: Optional[ToolHost] = None,
) -> np.ndarray:
    """
    In-process stretch of a 2-D array with the same preset keys as the file
    runner (input/output are not needed).
    """
    preset = dict(preset or {})
    p = {s.key: s.coerce(preset.get(s.key))
         for s in GAUSSIAN_STRETCH.presets if s.type != "path"}
    return gaussian_stretch_array(
        img, nodata,
        cutoff_sd=p["cutoff_sd"],
        num_output_bins=p["num_output_bins"],
        num_bins=p["num_bins"],
        host=host,
        chunk_rows=p["chunk_rows"],
    )


def _stretch_file(p: dict, host: ToolHost, default_nodata: float,
                  memmap_threshold_mb: float) -> str:
    inp, out = p["input"], p["output"]
    with RasterReader(inp, default_nodata=default_nodata) as reader:
        writer = RasterWriter(out, reader, data_type="integer", nodata=reader.nodata,
                              memmap_threshold_mb=memmap_threshold_mb)
        try:
            writer.set_preferred_palette(reader.palette)
            n = gaussian_stretch(
                reader, writer,
                cutoff_sd=p["cutoff_sd"],
                num_output_bins=p["num_output_bins"],
                num_bins=p["num_bins"],
                host=host,
                chunk_rows=p["chunk_rows"],
            )
            writer.add_metadata_entry(f"Created by the {TOOL_NAME} tool.")
            writer.add_metadata_entry(f"Created on {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}")
            writer.add_metadata_entry(
                f"cutoff_sd={p['cutoff_sd']} num_output_bins={p['num_output_bins']}"
            )
        except BaseException:
            writer.discard()
            raise
        writer.close()

    log.info("%s: %s -> %s (%d valid cells, rss %.0f MB)",
             TOOL_NAME, inp, out, n, get_memory_usage_mb())
    return out


def run_gaussian_stretch_on_file(
    preset: dict | None,
    *,
    host: Optional[ToolHost] = None,
    default_nodata: float = DEFAULT_NODATA,
    memmap_threshold_mb: float = DEFAULT_MEMMAP_THRESHOLD_MB,
) -> str:
    """
    Stretch preset["input"] into preset["output"].

    Every path (success, error, cancellation) resets the host's progress and
    calls host.tool_complete() exactly once.  Errors are reported to the host
    and re-raised; on success the output path is handed to host.return_data
    and returned.
    """
    host = host or ToolHost()
    try:
        p = _validated(preset)
        out = _stretch_file(p, host, default_nodata, memmap_threshold_mb)
        host.return_data(out)
        return out

    except StretchCancelled:
        host.show_feedback(MSG_CANCELLED)
        raise
    except MemoryError:
        host.show_feedback(MSG_OOM)
        raise
    except (PresetError, StretchConfigError) as e:
        host.show_feedback(MSG_NOT_SET if str(e) == MSG_NOT_SET else f"{MSG_BAD_PARAMS} {e}")
        raise
    except Exception as e:
        host.show_feedback(MSG_ERROR)
        host.log_exception(f"Error in {TOOL_NAME}", e)
        raise
    finally:
        host.reset_progress()
        host.tool_complete()
