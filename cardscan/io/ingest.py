"""
Simple I/O helpers for getting images into the RGBA layout the detectors expect.
"""

from __future__ import annotations
from typing import Union
import cv2
import numpy as np

Buffer = Union[bytes, bytearray, memoryview, np.ndarray]


def load_image(path: str) -> np.ndarray:
    """
    Load an image from disk as RGBA (H, W, 4) uint8.
    Raises FileNotFoundError if not found.
    """
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at: {path}")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)


def to_rgba(image: np.ndarray) -> np.ndarray:
    """
    Normalise gray (H, W), RGB (H, W, 3) or RGBA (H, W, 4) arrays to
    contiguous RGBA uint8. RGBA uint8 input is returned as-is (not copied).
    Bool masks become 0/255; None or non-numeric arrays raise ValueError.
    """
    if image is None:
        raise ValueError("Expected an image array, got None")
    arr = np.asarray(image)
    if arr.dtype == np.bool_:
        arr = arr.astype(np.uint8) * 255
    elif not (np.issubdtype(arr.dtype, np.integer) or np.issubdtype(arr.dtype, np.floating)):
        raise ValueError(f"Expected a numeric image array, got dtype {arr.dtype}")
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 2:
        return cv2.cvtColor(arr, cv2.COLOR_GRAY2RGBA)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"Expected (H, W), (H, W, 3) or (H, W, 4) image, got shape {arr.shape}")
    if arr.shape[2] == 3:
        return cv2.cvtColor(np.ascontiguousarray(arr), cv2.COLOR_RGB2RGBA)
    return np.ascontiguousarray(arr)


def rgba_from_buffer(buf: Buffer, width: int, height: int) -> np.ndarray:
    """Wrap a row-major RGBA byte buffer (4 bytes/pixel) as an (H, W, 4) array."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Image size must be positive, got {width}x{height}")
    flat = np.frombuffer(buf, dtype=np.uint8) if not isinstance(buf, np.ndarray) else buf.astype(np.uint8, copy=False).ravel()
    expected = width * height * 4
    if flat.size != expected:
        raise ValueError(f"RGBA buffer for {width}x{height} needs {expected} bytes, got {flat.size}")
    return flat.reshape(height, width, 4)


def luma(rgba: np.ndarray) -> np.ndarray:
    """Plain RGB average as float32 (alpha ignored)."""
    rgb = rgba[..., :3].astype(np.float32)
    return rgb.sum(axis=2) / 3.0
