# cardscan/detectors/histogram.py
from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import logging
import numpy as np

from cardscan.core.cancel import CancelToken, check
from cardscan.core.config import merge_cfg
from cardscan.core.contracts import Bounds, DetectedCard, HISTOGRAM, make_card_id
from cardscan.geometry.rects import aspect_ok
from cardscan.io.ingest import to_rgba

logger = logging.getLogger(__name__)

_LEVELS = np.arange(256, dtype=np.float64)


def region_stats(rgb: np.ndarray, x: int, y: int, w: int, h: int, step: int = 4) -> Tuple[float, float]:
    """
    Return (color_variance, texture_score) for one window, both in [0, 1].

    Pixels are sampled every `step` px. color_variance is the summed per-channel
    histogram variance over 3*255^2; texture_score is the mean absolute RGB
    difference to the diagonal sampled neighbour, over 100.
    """
    samples = rgb[y:y + h:step, x:x + w:step, :3]
    n = samples.shape[0] * samples.shape[1]
    if n == 0:
        return 0.0, 0.0

    variance = 0.0
    for ch in range(3):
        hist = np.bincount(samples[..., ch].ravel(), minlength=256)
        mean = float((hist * _LEVELS).sum()) / n
        variance += float((hist * (_LEVELS - mean) ** 2).sum()) / n
    color_variance = min(1.0, variance / (255.0 * 255.0 * 3.0))

    s = samples.astype(np.int16)
    texture_sum = float(np.abs(s[1:, 1:] - s[:-1, :-1]).sum())
    texture_score = min(1.0, texture_sum / (n * 100.0))
    return color_variance, texture_score


class HistogramDetector:
    """Finds card-sized windows whose colour histogram and local texture look 'busy' like printed art."""

    method = HISTOGRAM

    def __init__(self, cfg: Optional[Dict] = None) -> None:
        self.cfg = merge_cfg(cfg)
        self.target = float(self.cfg["card_aspect"])

    def _sizes(self) -> List[Tuple[int, int]]:
        c = self.cfg["histogram"]
        out = []
        for w, h in c["sizes"]:
            w, h = int(w), int(h)
            if w * h >= c["min_card_area"] and aspect_ok(w, h, c["aspect_tol"], self.target):
                out.append((w, h))
        return out

    def detect(self, image: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        c = self.cfg["histogram"]
        rgba = to_rgba(image)
        H, W = rgba.shape[:2]
        sizes = self._sizes()
        if not sizes:
            return []

        grid = max(int(c["min_grid_step"]), int(min(W, H) / float(c["grid_divisor"])))
        min_w = min(w for w, _ in sizes)
        min_h = min(h for _, h in sizes)
        step = int(c["sample_step"])

        found: List[Tuple[float, Bounds, float, float]] = []
        scanned = 0
        for y in range(0, H - min_h + 1, grid):
            check(token)
            for x in range(0, W - min_w + 1, grid):
                for w, h in sizes:
                    if x + w > W or y + h > H:
                        continue
                    scanned += 1
                    cv, tex = region_stats(rgba, x, y, w, h, step)
                    if cv > c["min_color_variance"] and tex > c["min_texture"]:
                        conf = min(float(c["max_confidence"]), 0.5 * cv + 0.5 * tex)
                        found.append((conf, Bounds(x, y, w, h), cv, tex))

        found.sort(key=lambda r: r[0], reverse=True)
        found = found[: int(c["max_results"])]
        logger.debug(f"histogram: grid={grid}px windows={scanned} kept={len(found)}")

        return [
            DetectedCard(
                id=make_card_id(self.method, i, b),
                bounds=b,
                confidence=conf,
                method=self.method,
                color_variance=cv,
                texture_score=tex,
            )
            for i, (conf, b, cv, tex) in enumerate(found)
        ]
