"""
Image processing utilities shared by the frame source, calibration and output stages.

Functions for CFA/Bayer demosaicing, defect inpainting, normalization and cropping.
All multi-band buffers use the (bands, height, width) layout.
"""

import numpy as np


def demosaic_cfa(mosaic: np.ndarray, bayer_pattern: str) -> np.ndarray:
    """Demosaic CFA/Bayer mosaic to full-resolution RGB using OpenCV.

    Args:
        mosaic: 2D Bayer mosaic (H, W), uint8 or uint16 sensor values
        bayer_pattern: Bayer pattern (RGGB, BGGR, GBRG, GRBG)

    Returns:
        RGB image (3, H, W) in float32, same value range as the input
    """
    import cv2

    bayer_codes = {
        "RGGB": cv2.COLOR_BAYER_RG2RGB,
        "BGGR": cv2.COLOR_BAYER_BG2RGB,
        "GBRG": cv2.COLOR_BAYER_GB2RGB,
        "GRBG": cv2.COLOR_BAYER_GR2RGB,
    }

    bp = str(bayer_pattern or "").strip().upper()
    if bp not in bayer_codes:
        raise ValueError(f"unsupported bayer pattern: {bayer_pattern}")

    if mosaic.dtype not in (np.uint8, np.uint16):
        # OpenCV's Bayer demosaicing supports 8-bit and 16-bit inputs only.
        mosaic = np.clip(np.rint(mosaic), 0, 65535).astype(np.uint16)

    rgb_hwc = cv2.cvtColor(np.ascontiguousarray(mosaic), bayer_codes[bp])
    return np.transpose(rgb_hwc, (2, 0, 1)).astype("float32")


def _neighbors_3x3(data: np.ndarray) -> np.ndarray:
    """Stack the 8 neighbors (excluding center) of every pixel, edge padded."""
    h, w = data.shape
    padded = np.pad(data, 1, mode='edge')
    return np.stack([
        padded[0:h, 0:w],      # top-left
        padded[0:h, 1:w+1],    # top
        padded[0:h, 2:w+2],    # top-right
        padded[1:h+1, 0:w],    # left
        # skip center
        padded[1:h+1, 2:w+2],  # right
        padded[2:h+2, 0:w],    # bottom-left
        padded[2:h+2, 1:w+1],  # bottom
        padded[2:h+2, 2:w+2],  # bottom-right
    ], axis=0)


def inpaint_masked(band: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Replace masked pixels of a single band by the mean of their unmasked neighbors.

    Pixels whose whole neighborhood is masked fall back to the median of the
    8 neighbors. Returns a new float32 array.
    """
    data = np.asarray(band, dtype=np.float32)
    mask = np.asarray(mask, dtype=bool)
    out = data.copy()
    if not np.any(mask):
        return out

    values = _neighbors_3x3(data)
    valid = ~_neighbors_3x3(mask)

    count = valid.sum(axis=0)
    total = np.where(valid, values, 0.0).sum(axis=0)
    local_mean = np.divide(total, count, out=np.zeros_like(total), where=count > 0)
    local_median = np.median(values, axis=0)

    fill = np.where(count > 0, local_mean, local_median).astype(np.float32)
    out[mask] = fill[mask]
    return out


def normalize_to_bit_depth(image: np.ndarray, bit_depth: int = 16) -> np.ndarray:
    """Stretch an image linearly to the full range of an unsigned integer depth.

    Min and max are taken across all bands.
    """
    if bit_depth not in (8, 16):
        raise ValueError(f"unsupported output bit depth: {bit_depth}")
    max_val = 255.0 if bit_depth == 8 else 65535.0
    dtype = np.uint8 if bit_depth == 8 else np.uint16

    data = np.asarray(image, dtype=np.float32)
    lo = float(np.min(data))
    hi = float(np.max(data))
    if hi - lo <= 0:
        return np.zeros_like(data, dtype=dtype)
    scaled = (data - lo) / (hi - lo) * max_val
    return np.clip(np.rint(scaled), 0, max_val).astype(dtype)


def center_crop(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Crop a (bands, H, W) image to width x height around its center."""
    _, h, w = image.shape
    x = (w - width) // 2
    y = (h - height) // 2
    return image[:, y:y + height, x:x + width].copy()
