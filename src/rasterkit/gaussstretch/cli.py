# src/rasterkit/gaussstretch/cli.py
from __future__ import annotations

import argparse
import logging
import sys

from rasterkit.gaussstretch.config_manager import get_stretch_config
from rasterkit.gaussstretch.gaussstretch_headless import run_gaussian_stretch_on_file
from rasterkit.gaussstretch.imageops.stretch import StretchCancelled, StretchConfigError
from rasterkit.gaussstretch.log_setup import configure_logging
from rasterkit.gaussstretch.ops.commands import GAUSSIAN_STRETCH, PresetError, preset_from_args
from rasterkit.gaussstretch.tool_host import ConsoleHost, ToolHost

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def _help(key: str) -> str:
    p = GAUSSIAN_STRETCH.preset(key)
    return p.desc if p.default is None else f"{p.desc} (default {p.default})"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="gaussstretch",
        description=f"{GAUSSIAN_STRETCH.name} [{GAUSSIAN_STRETCH.group}]: {GAUSSIAN_STRETCH.description}",
        epilog="Positional form: gaussstretch IN OUT [CUTOFF_SD] [NUM_OUTPUT_BINS]",
    )
    ap.add_argument("args", nargs="*", metavar="ARG",
                    help="IN OUT [CUTOFF_SD] [NUM_OUTPUT_BINS] (alternative to -i/-o)")
    ap.add_argument("-i", "--input", help=_help("input"))
    ap.add_argument("-o", "--output", help=_help("output"))
    # numeric options stay strings; the command presets coerce and range-check them
    ap.add_argument("--cutoff", dest="cutoff_sd", help=_help("cutoff_sd"))
    ap.add_argument("--bins", dest="num_output_bins", help=_help("num_output_bins"))
    ap.add_argument("--hist-bins", dest="num_bins", help=_help("num_bins"))
    ap.add_argument("--chunk-rows", dest="chunk_rows", help=_help("chunk_rows"))
    ap.add_argument("--nodata", type=float, default=None,
                    help="No-data value for inputs that do not declare one")
    ap.add_argument("--config", default=None, help="INI settings file")
    ap.add_argument("-q", "--quiet", action="store_true", help="No progress output")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def _preset_from_namespace(args: argparse.Namespace, defaults: dict) -> dict:
    preset = dict(defaults)
    if args.args or (args.input is None and args.output is None):
        # nothing given at all: preset_from_args reports unset parameters
        preset.update(preset_from_args(GAUSSIAN_STRETCH, args.args))
    for key in ("input", "output", "cutoff_sd", "num_output_bins", "num_bins", "chunk_rows"):
        value = getattr(args, key)
        if value is not None:
            preset[key] = value
    return preset


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(argv)

    cfg = get_stretch_config(args.config)
    configure_logging("DEBUG" if args.verbose else cfg.log_level)
    log.info("Settings: %s", cfg.file_name)

    host = ToolHost() if args.quiet else ConsoleHost()
    default_nodata = cfg.default_nodata if args.nodata is None else args.nodata

    try:
        preset = _preset_from_namespace(args, cfg.stretch_preset())
        run_gaussian_stretch_on_file(
            preset,
            host=host,
            default_nodata=default_nodata,
            memmap_threshold_mb=cfg.memmap_threshold_mb,
        )
    except (PresetError, StretchConfigError) as e:
        log.warning("Rejected parameters: %s", e)
        if not host.completed:
            # rejected before the run started; the host has not reported it
            print(f"{GAUSSIAN_STRETCH.name}: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except (StretchCancelled, KeyboardInterrupt):
        return EXIT_CANCELLED
    except Exception:
        return EXIT_ERROR
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
