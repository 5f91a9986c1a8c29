# cardscan/geometry/edges.py
from __future__ import annotations
import cv2
import numpy as np

from cardscan.io.ingest import luma


def edge_map(rgba: np.ndarray) -> np.ndarray:
    """
    Sobel gradient magnitude of the RGB-average luma, float32 (H, W).

    Border rows/columns stay zero (no wraparound or reflection). Images
    smaller than 3x3 give an all-zero map.
    """
    h, w = rgba.shape[:2]
    out = np.zeros((h, w), np.float32)
    if h < 3 or w < 3:
        return out
    gray = luma(rgba)
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    mag = cv2.magnitude(gx, gy)
    out[1:-1, 1:-1] = mag[1:-1, 1:-1]
    return out
