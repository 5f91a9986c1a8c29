"""
Synthetic scenes for the detector tests. Everything is generated on the fly
with fixed seeds, so no test assets are required.
"""
from __future__ import annotations
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import pytest

from cardscan.core.contracts import Bounds, DetectedCard, make_card_id

TOLERANCE = {"histogram": 0.25, "template": 0.12, "hough": 0.15, "advanced": 0.15}

SHEET_W, SHEET_H = 800, 1120
SHEET_CARDS = [(50, 50, 250, 350), (400, 50, 250, 350)]


def blank(w: int, h: int, gray: int = 128) -> np.ndarray:
    return np.full((h, w, 4), (gray, gray, gray, 255), np.uint8)


def draw_bordered_card(img: np.ndarray, rect: Tuple[int, int, int, int], *, border: int = 6,
                       border_gray: int = 25, fill: int = 185, noise: int = 8, seed: int = 7) -> None:
    """Solid dark border with a lightly textured (low-amplitude noise) gray interior."""
    x, y, w, h = rect
    cv2.rectangle(img, (x, y), (x + w - 1, y + h - 1), (border_gray, border_gray, border_gray, 255), cv2.FILLED)
    ih, iw = h - 2 * border, w - 2 * border
    rng = np.random.default_rng(seed)
    interior = np.clip(fill + rng.integers(-noise, noise + 1, size=(ih, iw)), 0, 255).astype(np.uint8)
    img[y + border:y + border + ih, x + border:x + border + iw, :3] = interior[..., None]


def draw_busy_card(img: np.ndarray, rect: Tuple[int, int, int, int], block: int = 6, seed: int = 3) -> None:
    """High-contrast random colour blocks, like dense printed art."""
    x, y, w, h = rect
    rng = np.random.default_rng(seed)
    by, bx = (h + block - 1) // block, (w + block - 1) // block
    tiles = (rng.integers(0, 2, size=(by, bx, 3)) * 255).astype(np.uint8)
    art = np.repeat(np.repeat(tiles, block, axis=0), block, axis=1)[:h, :w]
    img[y:y + h, x:x + w, :3] = art


def draw_saturated_card(img: np.ndarray, rect: Tuple[int, int, int, int], border: int = 6) -> None:
    x, y, w, h = rect
    cv2.rectangle(img, (x, y), (x + w - 1, y + h - 1), (20, 20, 20, 255), cv2.FILLED)
    cv2.rectangle(img, (x + border, y + border), (x + w - 1 - border, y + h - 1 - border), (230, 20, 30, 255), cv2.FILLED)


def make_card(method: str, rect: Tuple[int, int, int, int], confidence: float, index: int = 0, **metrics) -> DetectedCard:
    b = Bounds(*rect)
    return DetectedCard(id=make_card_id(method, index, b), bounds=b, confidence=confidence, method=method, **metrics)


def assert_aspect_invariant(cards: Iterable[DetectedCard]) -> None:
    target = 2.5 / 3.5
    for c in cards:
        assert abs(c.bounds.width / c.bounds.height - target) <= TOLERANCE[c.method] + 1e-9, c


class FakeDetector:
    """Stands in for a real detector in orchestrator tests."""

    def __init__(self, method: str, cards: Sequence[DetectedCard] = (), exc: Optional[Exception] = None):
        self.method = method
        self.cards = list(cards)
        self.exc = exc
        self.calls = 0

    def detect(self, rgba, token=None) -> List[DetectedCard]:
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return list(self.cards)


@pytest.fixture
def sheet() -> np.ndarray:
    """800x1120 sheet with two bordered, textured cards at the SHEET_CARDS positions."""
    img = blank(SHEET_W, SHEET_H, gray=120)
    for i, rect in enumerate(SHEET_CARDS):
        draw_bordered_card(img, rect, seed=11 + i)
    return img


@pytest.fixture
def gray_sheet() -> np.ndarray:
    return blank(SHEET_W, SHEET_H, gray=128)
