"""
Still image utilities.

Reading and writing single images in FITS (astropy) or common raster
formats (OpenCV). Arrays use the (bands, height, width) layout in memory.
"""

from pathlib import Path
from typing import Any

import numpy as np
from astropy.io import fits


def is_fits_image_path(p: Path) -> bool:
    """Check if path has FITS extension."""
    suf = p.suffix.lower()
    return suf in {".fit", ".fits", ".fts"}


def read_fits_float(path: Path) -> tuple[np.ndarray, Any]:
    """Read FITS file as float32 array with header."""
    hdr = fits.getheader(str(path), ext=0)
    data = fits.getdata(str(path), ext=0)
    if data is None:
        raise RuntimeError(f"no data in FITS: {path}")
    return np.asarray(data).astype("float32", copy=False), hdr


def _to_bands_first(data: np.ndarray) -> np.ndarray:
    if data.ndim == 2:
        return data[np.newaxis, :, :]
    if data.ndim != 3:
        raise RuntimeError(f"expected 2D or 3D image, got shape={data.shape}")
    if data.shape[0] in (1, 3):
        return data
    if data.shape[2] in (1, 3):
        return np.transpose(data, (2, 0, 1))
    raise RuntimeError(f"unsupported image layout: shape={data.shape}")


def read_image(path: Path) -> np.ndarray:
    """Load a still image as float32 (bands, H, W) without rescaling."""
    import cv2

    path = Path(path)
    if is_fits_image_path(path):
        data, _ = read_fits_float(path)
        return np.ascontiguousarray(_to_bands_first(data), dtype=np.float32)

    data = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if data is None:
        raise RuntimeError(f"unable to read image: {path}")
    if data.ndim == 3:
        if data.shape[2] == 4:
            data = data[:, :, :3]
        data = cv2.cvtColor(data, cv2.COLOR_BGR2RGB)
    return np.ascontiguousarray(_to_bands_first(data), dtype=np.float32)


def write_image(path: Path, data: np.ndarray, header: dict | None = None) -> None:
    """Save a (bands, H, W) image. FITS keeps the bands-first layout."""
    import cv2

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = np.asarray(data)

    if is_fits_image_path(path):
        hdu = fits.PrimaryHDU(data[0] if data.shape[0] == 1 else data)
        for key, val in (header or {}).items():
            hdu.header[key] = val
        hdu.writeto(str(path), overwrite=True)
        return

    if data.shape[0] == 1:
        out = data[0]
    else:
        out = cv2.cvtColor(np.ascontiguousarray(np.transpose(data, (1, 2, 0))), cv2.COLOR_RGB2BGR)
    if not cv2.imwrite(str(path), out):
        raise RuntimeError(f"unable to write image: {path}")
