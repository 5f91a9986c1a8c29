"""
Core contracts and simple data types shared across detectors.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import numpy as np

# Physical trading card, 2.5" x 3.5" (W/H)
CARD_ASPECT = 2.5 / 3.5

HISTOGRAM = "histogram"
TEMPLATE = "template"
HOUGH = "hough"
ADVANCED = "advanced"
METHODS: Tuple[str, ...] = (HISTOGRAM, TEMPLATE, HOUGH, ADVANCED)


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned rectangle in source-image pixel coordinates."""
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Bounds need positive size, got {self.width}x{self.height}")

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / float(self.height)

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


@dataclass
class Corners:
    """
    The four card corners in image coordinates (pixels), ordered clockwise:
    [top-left, top-right, bottom-right, bottom-left].

    pts: np.ndarray with shape (4, 2), dtype float32
    """
    pts: np.ndarray

    @classmethod
    def from_bounds(cls, b: Bounds) -> "Corners":
        pts = np.array([[b.x, b.y], [b.x2, b.y], [b.x2, b.y2], [b.x, b.y2]], dtype=np.float32)
        return cls(pts)

    def as_tuple(self) -> Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float], Tuple[float, float]]:
        return tuple(map(tuple, self.pts.astype(float)))  # type: ignore[return-value]


@dataclass(frozen=True)
class DetectedCard:
    """
    One card-like rectangle produced by a detector.

    `confidence` is in [0, 1] but its meaning is method specific; the optional
    metrics only feed ensemble scoring.
    """
    id: str
    bounds: Bounds
    confidence: float
    method: str
    edge_strength: Optional[float] = None
    color_variance: Optional[float] = None
    texture_score: Optional[float] = None
    line_strength: Optional[float] = None
    rectangular_score: Optional[float] = None
    match_score: Optional[float] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @property
    def aspect_ratio(self) -> float:
        return self.bounds.aspect_ratio

    @property
    def corners(self) -> Corners:
        return Corners.from_bounds(self.bounds)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "bounds": dict(zip(("x", "y", "width", "height"), self.bounds.as_tuple())),
            "aspect_ratio": round(self.aspect_ratio, 4),
            "confidence": round(self.confidence, 4),
            "method": self.method,
            "corners": [list(p) for p in self.corners.as_tuple()],
        }
        for name in ("edge_strength", "color_variance", "texture_score",
                     "line_strength", "rectangular_score", "match_score"):
            v = getattr(self, name)
            if v is not None:
                out[name] = round(float(v), 4)
        return out


def make_card_id(method: str, index: int, b: Bounds) -> str:
    return f"{method}-{index}-{b.x}-{b.y}-{b.width}x{b.height}"


@dataclass
class DetectionResult:
    cards: List[DetectedCard]
    processing_time_ms: float
    methods_used: List[str]
    total_candidates: int
    debug_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cards": [c.to_dict() for c in self.cards],
            "processing_time_ms": round(self.processing_time_ms, 1),
            "methods_used": list(self.methods_used),
            "total_candidates": self.total_candidates,
            "debug_info": self.debug_info,
        }
