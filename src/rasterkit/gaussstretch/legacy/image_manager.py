#legacy.image_manager.py
# --- required imports for this module ---
from __future__ import annotations

import json
import logging
import math
import os
from pathlib import Path

import numpy as np
import tifffile as tiff
from astropy.io import fits
from astropy.io.fits.verify import VerifyError

from rasterkit.gaussstretch.imageops.stretch import valid_range
from rasterkit.gaussstretch.memory_utils import (
    DEFAULT_MEMMAP_THRESHOLD_MB,
    cleanup_memmap,
    smart_empty,
)

log = logging.getLogger(__name__)

DEFAULT_NODATA = -32768.0

GDAL_NODATA_TAG = 42113

_FITS_EXTS = ('.fits', '.fit', '.fts')
_TIFF_EXTS = ('.tif', '.tiff')
_NPY_EXTS = ('.npy',)

# cards that describe the data layout of the source HDU; never copied
_STRUCTURAL_KEYS = {
    "SIMPLE", "XTENSION", "BITPIX", "NAXIS", "NAXIS1", "NAXIS2", "NAXIS3",
    "EXTEND", "PCOUNT", "GCOUNT", "BZERO", "BSCALE", "BLANK",
    "DATAMIN", "DATAMAX", "NODATA", "END", "HISTORY", "COMMENT", "",
}


class RasterFormatError(ValueError):
    """Unsupported file type or raster layout."""


def raster_format(path: str) -> str:
    p = str(path).lower()
    if p.endswith(_FITS_EXTS):
        return "fits"
    if p.endswith(_TIFF_EXTS):
        return "tif"
    if p.endswith(_NPY_EXTS):
        return "npy"
    raise RasterFormatError(f"Unsupported raster format: {path}")


def _sidecar_path(path: str) -> str:
    return f"{path}.json"


def _drop_invalid_cards(header: fits.Header) -> fits.Header:
    """
    Return a copy of the FITS header with any cards that raise VerifyError removed.
    """
    hdr = header.copy()
    bad_keys = []
    for card in list(hdr.cards):
        try:
            _ = card.value
        except VerifyError as e:
            log.warning("Dropping invalid FITS card %r: %s", card.keyword, e)
            bad_keys.append(card.keyword)
    for key in bad_keys:
        del hdr[key]
    return hdr


def _to_single_band(data: np.ndarray, path: str) -> np.ndarray:
    img = np.asarray(data)
    # drop singleton band axes only; a 1xN or Nx1 raster keeps both dimensions
    while img.ndim > 2 and img.shape[0] == 1:
        img = img[0]
    while img.ndim > 2 and img.shape[-1] == 1:
        img = img[..., 0]
    if img.ndim != 2:
        raise RasterFormatError(
            f"{path}: expected a single-band 2-D raster, got shape {np.shape(data)}"
        )
    # Ensure native byte order
    if img.dtype.byteorder not in ('=', '|'):
        img = img.astype(img.dtype.newbyteorder('='))
    return img


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

class RasterReader:
    """
    Read-only single-band raster.

    Attributes: rows, cols, nodata, min_value, max_value, palette, header.
    The pixel array is loaded once; rows are served as float64.
    """

    def __init__(self, path: str, default_nodata: float = DEFAULT_NODATA):
        self.path = str(path)
        self.format = raster_format(self.path)
        if not os.path.exists(self.path):
            raise FileNotFoundError(self.path)

        self.header: dict = {}
        self.fits_header: fits.Header | None = None
        nodata = None
        data_min = data_max = None

        if self.format == "fits":
            data, nodata, data_min, data_max = self._load_fits()
        elif self.format == "tif":
            data, nodata = self._load_tiff()
        else:
            data, nodata = self._load_npy()

        self._data = _to_single_band(data, self.path)
        self.rows, self.cols = self._data.shape
        self.nodata = float(default_nodata if nodata is None else nodata)

        if data_min is None or data_max is None:
            data_min, data_max = valid_range(self._data, self.nodata)
        self.min_value = float(data_min)
        self.max_value = float(data_max)
        if not (math.isfinite(self.min_value) and math.isfinite(self.max_value)):
            raise RasterFormatError(
                f"{self.path}: value range {self.min_value}..{self.max_value} is not finite"
            )
        if self.min_value > self.max_value:
            raise RasterFormatError(
                f"{self.path}: minimum {self.min_value} exceeds maximum {self.max_value}"
            )
        self.palette = self.header.get("palette")
        log.info("Opened %s raster %s (%dx%d, nodata=%s, range %g..%g)",
                 self.format, self.path, self.rows, self.cols, self.nodata,
                 self.min_value, self.max_value)

    # ---- format loaders ----
    def _load_fits(self):
        with fits.open(self.path) as hdul:
            hdu = next((h for h in hdul if h.is_image and h.header.get("NAXIS", 0) > 0), None)
            if hdu is None:
                raise RasterFormatError(f"No image data found in FITS file {self.path}.")
            # copy before touching .data; astropy drops BZERO/BSCALE once it scales
            hdr = _drop_invalid_cards(hdu.header)
            data = np.array(hdu.data, copy=True)

        nodata = None
        if "BLANK" in hdr and int(hdr.get("BITPIX", 0)) > 0:
            if np.issubdtype(data.dtype, np.integer):
                # BLANK is a raw value; pixels arrive with BSCALE/BZERO applied
                nodata = float(hdr["BLANK"]) * float(hdr.get("BSCALE", 1.0)) + float(hdr.get("BZERO", 0.0))
            else:
                # non-integer scaling: astropy has already turned blanks into NaN
                nodata = math.nan
        elif "NODATA" in hdr:
            nodata = float(hdr["NODATA"])

        self.fits_header = hdr
        self.header = {k.lower(): v for k, v in hdr.items()
                       if k not in ("HISTORY", "COMMENT", "")}
        self.header["history"] = [str(h) for h in hdr.get("HISTORY", [])]
        return data, nodata, hdr.get("DATAMIN"), hdr.get("DATAMAX")

    def _load_tiff(self):
        with tiff.TiffFile(self.path) as tf:
            page = tf.pages[0]
            data = page.asarray()
            tag = page.tags.get(GDAL_NODATA_TAG)
            nodata = float(str(tag.value).strip("\x00 ")) if tag is not None else None
            meta = tf.shaped_metadata[0] if tf.shaped_metadata else {}
        self.header = {k: v for k, v in dict(meta).items() if k != "shape"}
        return data, nodata

    def _load_npy(self):
        data = np.load(self.path, allow_pickle=False)
        nodata = None
        side = _sidecar_path(self.path)
        if os.path.exists(side):
            with open(side, "r", encoding="utf-8") as f:
                self.header = json.load(f)
            nodata = self.header.get("nodata")
        return data, nodata

    # ---- access ----
    def get_row(self, row: int) -> np.ndarray:
        return np.asarray(self._data[row], dtype=np.float64)

    def get_rows(self, start: int, stop: int) -> np.ndarray:
        return np.asarray(self._data[start:stop], dtype=np.float64)

    def close(self) -> None:
        self._data = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _output_dtype(data_type: str, nodata: float):
    if data_type == "float":
        return np.float32
    if data_type != "integer":
        raise RasterFormatError(f"Unknown data type: {data_type}")
    info = np.iinfo(np.int32)
    if math.isfinite(nodata) and float(nodata).is_integer() and info.min <= nodata <= info.max:
        return np.int32
    # sentinel not representable as int32: integer values stored as float32
    return np.float32


class RasterWriter:
    """
    Writable raster shaped like a reference raster.  Pixels start as no-data;
    nothing touches the disk until close().  discard() drops the buffer
    without writing.
    """

    def __init__(self,
                 path: str,
                 reference: RasterReader,
                 data_type: str = "integer",
                 nodata: float | None = None,
                 memmap_threshold_mb: float = DEFAULT_MEMMAP_THRESHOLD_MB):
        self.path = str(path)
        self.format = raster_format(self.path)
        self.reference = reference
        self.rows, self.cols = reference.rows, reference.cols
        self.nodata = float(reference.nodata if nodata is None else nodata)
        self.dtype = _output_dtype(data_type, self.nodata)
        if self.dtype == np.float32:
            # sentinel as float32 stores it
            self.nodata = float(np.float32(self.nodata))
        self.metadata: list[str] = []
        self.palette: str | None = None

        self._buf, self._mm_path = smart_empty((self.rows, self.cols), self.dtype,
                                               threshold_mb=memmap_threshold_mb)
        self._buf[...] = self.nodata
        self._closed = False

    # ---- pixels ----
    def set_value(self, row: int, col: int, value: float) -> None:
        self._buf[row, col] = value

    def set_row(self, row: int, values: np.ndarray) -> None:
        self._buf[row, :] = values

    def set_rows(self, start: int, values: np.ndarray) -> None:
        self._buf[start:start + values.shape[0], :] = values

    def get_rows(self, start: int, stop: int) -> np.ndarray:
        return np.asarray(self._buf[start:stop])

    # ---- metadata ----
    def add_metadata_entry(self, text: str) -> None:
        self.metadata.append(str(text))

    def set_preferred_palette(self, palette: str | None) -> None:
        self.palette = palette

    # ---- lifecycle ----
    def _valid_range(self) -> tuple[float, float]:
        return valid_range(self._buf, self.nodata)

    def close(self) -> None:
        if self._closed:
            return
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        if self.format == "fits":
            self._write_fits()
        elif self.format == "tif":
            self._write_tiff()
        else:
            self._write_npy()
        log.info("Saved %s raster %s (%dx%d, %s)", self.format, self.path,
                 self.rows, self.cols, np.dtype(self.dtype).name)
        self._release()

    def discard(self) -> None:
        if not self._closed:
            log.debug("Discarding unwritten raster %s", self.path)
            self._release()

    def _release(self) -> None:
        buf, mm_path = self._buf, self._mm_path
        self._buf = None
        self._mm_path = None
        self._closed = True
        if mm_path is not None:
            cleanup_memmap(buf, mm_path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.discard()
        return False

    # ---- format writers ----
    def _write_fits(self) -> None:
        hdr = fits.Header()
        src = self.reference.fits_header
        if src is not None:
            for card in src.cards:
                if card.keyword in _STRUCTURAL_KEYS:
                    continue
                try:
                    hdr[card.keyword] = (card.value, card.comment)
                except (ValueError, VerifyError):
                    pass

        lo, hi = self._valid_range()
        data = np.asarray(self._buf)
        if self.dtype == np.int32:
            hdr["BLANK"] = int(self.nodata)
        if math.isfinite(self.nodata):
            hdr["NODATA"] = self.nodata
        hdr["DATAMIN"] = lo
        hdr["DATAMAX"] = hi
        if self.palette:
            hdr["PALETTE"] = self.palette
        for entry in self.metadata:
            hdr.add_history(entry)

        fits.PrimaryHDU(data=data, header=hdr).writeto(self.path, overwrite=True)

    def _meta_dict(self) -> dict:
        meta = {
            "nodata": self.nodata,   # json writes NaN as a bare token and reads it back
            "history": list(self.metadata),
        }
        if self.palette:
            meta["palette"] = self.palette
        return meta

    def _write_tiff(self) -> None:
        tiff.imwrite(
            self.path,
            np.asarray(self._buf),
            metadata=self._meta_dict(),
            extratags=[(GDAL_NODATA_TAG, 's', 0, repr(self.nodata), True)],
        )

    def _write_npy(self) -> None:
        np.save(self.path, np.asarray(self._buf), allow_pickle=False)
        with open(_sidecar_path(self.path), "w", encoding="utf-8") as f:
            json.dump(self._meta_dict(), f, indent=2)
