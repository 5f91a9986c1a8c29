# cardscan/detectors/advanced.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math
import cv2
import numpy as np

from cardscan.core.cancel import CancelToken, check
from cardscan.core.config import merge_cfg
from cardscan.core.contracts import ADVANCED, Bounds, DetectedCard, make_card_id
from cardscan.geometry.edges import edge_map
from cardscan.geometry.rects import aspect_ok
from cardscan.io.ingest import to_rgba

logger = logging.getLogger(__name__)


class DetectorStrategy(ABC):
    """One way of producing 'advanced' candidates. The facade uses the first available ones in order."""

    name: str = "strategy"

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def detect(self, rgba: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        ...


class NativeBackend(DetectorStrategy):
    """
    Slot for a native contour backend (OpenCV findContours + polygon approximation).
    There is no contour implementation yet, so it only reports itself available
    when explicitly enabled and then finds nothing, letting the facade fall through.
    """

    name = "native"

    def __init__(self, cfg: Optional[Dict] = None) -> None:
        self.cfg = merge_cfg(cfg)

    def is_available(self) -> bool:
        return bool(self.cfg["native"]["enabled"]) and hasattr(cv2, "findContours")

    def detect(self, rgba: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        logger.debug("native backend: no contour implementation, deferring")
        return []


# ----------------------------------------------------------------------------- #
# Geometric fallback                                                            #
# ----------------------------------------------------------------------------- #

def _grid(span: int, min_step: int, max_positions: int) -> range:
    if span < 0:
        return range(0)
    step = max(min_step, int(math.ceil(span / float(max_positions))))
    return range(0, span + 1, step)


class PerimeterCounter:
    """O(1) count of strong edge pixels along a rectangle's perimeter via prefix sums."""

    def __init__(self, strong: np.ndarray) -> None:
        s = strong.astype(np.int32)
        H, W = s.shape
        self.rows = np.zeros((H, W + 1), np.int32)
        self.rows[:, 1:] = np.cumsum(s, axis=1)
        self.cols = np.zeros((H + 1, W), np.int32)
        self.cols[1:, :] = np.cumsum(s, axis=0)

    def score(self, x: int, y: int, w: int, h: int) -> float:
        """Fraction of perimeter pixels (corners counted once) that are strong edges."""
        if w < 2 or h < 2:
            return 0.0
        x2, y2 = x + w - 1, y + h - 1
        top = self.rows[y, x + w] - self.rows[y, x]
        bottom = self.rows[y2, x + w] - self.rows[y2, x]
        left = self.cols[y2, x] - self.cols[y + 1, x]
        right = self.cols[y2, x2] - self.cols[y + 1, x2]
        total = 2 * w + 2 * (h - 2)
        return float(top + bottom + left + right) / float(total)


class GeometricFallback(DetectorStrategy):
    """Coarse grid search of standard card pixel sizes scored by perimeter edge density."""

    name = "geometric"

    def __init__(self, cfg: Optional[Dict] = None) -> None:
        self.cfg = merge_cfg(cfg)
        self.target = float(self.cfg["card_aspect"])

    def is_available(self) -> bool:
        return True

    def _sizes(self) -> List[Tuple[int, int]]:
        c = self.cfg["advanced"]
        out = []
        for w, h in c["sizes"]:
            w, h = int(w), int(h)
            if c["min_area"] <= w * h <= c["max_area"] and aspect_ok(w, h, c["aspect_tol"], self.target):
                out.append((w, h))
        return out

    def detect(self, rgba: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        c = self.cfg["advanced"]
        H, W = rgba.shape[:2]
        counter = PerimeterCounter(edge_map(rgba) > float(c["edge_threshold"]))
        min_step, max_pos = int(c["min_grid_step"]), int(c["max_positions"])

        found: List[Tuple[float, Bounds]] = []
        for w, h in self._sizes():
            for y in _grid(H - h, min_step, max_pos):
                check(token)
                for x in _grid(W - w, min_step, max_pos):
                    score = counter.score(x, y, w, h)
                    if score > c["min_edge_score"]:
                        found.append((score, Bounds(x, y, w, h)))

        found.sort(key=lambda r: r[0], reverse=True)
        found = found[: int(c["max_results"])]
        conf = float(c["confidence"])
        tol = float(c["aspect_tol"])
        return [
            DetectedCard(
                id=make_card_id(ADVANCED, i, b),
                bounds=b,
                confidence=conf,
                method=ADVANCED,
                edge_strength=score,
                rectangular_score=max(0.0, 1.0 - abs(b.aspect_ratio - self.target) / tol),
            )
            for i, (score, b) in enumerate(found)
        ]


class AdvancedDetector:
    """
    Facade over the available strategies: each is tried in order and the first
    non-empty answer wins. With the defaults that is the (disabled) native
    backend followed by the geometric fallback.
    """

    method = ADVANCED

    def __init__(self, cfg: Optional[Dict] = None, strategies: Optional[Sequence[DetectorStrategy]] = None) -> None:
        self.cfg = merge_cfg(cfg)
        if strategies is None:
            strategies = [NativeBackend(self.cfg), GeometricFallback(self.cfg)]
        self.strategies: List[DetectorStrategy] = [s for s in strategies if s.is_available()]
        if not self.strategies:
            raise ValueError("No detection strategy is available")
        logger.debug(f"advanced: strategies={[s.name for s in self.strategies]}")

    def detect(self, image: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        rgba = to_rgba(image)
        for strategy in self.strategies:
            check(token)
            cards = strategy.detect(rgba, token)
            if cards:
                logger.debug(f"advanced: {strategy.name} produced {len(cards)}")
                return cards
        return []
