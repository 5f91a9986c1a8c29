# cardscan/detectors/hough.py
from __future__ import annotations
from typing import Dict, List, NamedTuple, Optional, Tuple
import logging
import numpy as np

from cardscan.core.cancel import CancelToken, check
from cardscan.core.config import merge_cfg
from cardscan.core.contracts import Bounds, DetectedCard, HOUGH, make_card_id
from cardscan.geometry.edges import edge_map
from cardscan.geometry.rects import aspect_ok, suppress_overlaps
from cardscan.io.ingest import to_rgba

logger = logging.getLogger(__name__)


class Line(NamedTuple):
    x1: int
    y1: int
    x2: int
    y2: int
    strength: float

    @property
    def horizontal(self) -> bool:
        return self.y1 == self.y2

    @property
    def length(self) -> int:
        return max(self.x2 - self.x1, self.y2 - self.y1) + 1


# ----------------------------------------------------------------------------- #
# Line extraction                                                               #
# ----------------------------------------------------------------------------- #

def _runs(profile: np.ndarray, thresh: float, min_len: int) -> List[Tuple[int, int, float]]:
    """(start, end_exclusive, mean_strength) of every run above `thresh` at least `min_len` long."""
    mask = profile > thresh
    if not mask.any():
        return []
    d = np.diff(np.concatenate(([0], mask.astype(np.int8), [0])))
    starts = np.flatnonzero(d == 1)
    ends = np.flatnonzero(d == -1)
    keep = (ends - starts) >= min_len
    if not keep.any():
        return []
    cs = np.concatenate(([0.0], np.cumsum(profile, dtype=np.float64)))
    out = []
    for s, e in zip(starts[keep], ends[keep]):
        out.append((int(s), int(e), float((cs[e] - cs[s]) / (e - s))))
    return out


def extract_lines(edges: np.ndarray, c: Dict, token: Optional[CancelToken] = None) -> Tuple[List[Line], List[Line]]:
    """Horizontal and vertical edge runs, weak runs dropped."""
    thresh = float(c["edge_threshold"])
    min_len = int(c["min_line_length"])
    min_strength = float(c["min_line_strength"])
    H, W = edges.shape[:2]

    horiz: List[Line] = []
    for y in range(H):
        if y % 64 == 0:
            check(token)
        for s, e, st in _runs(edges[y], thresh, min_len):
            if st > min_strength:
                horiz.append(Line(s, y, e - 1, y, st))

    vert: List[Line] = []
    cols = np.ascontiguousarray(edges.T)
    for x in range(W):
        if x % 64 == 0:
            check(token)
        for s, e, st in _runs(cols[x], thresh, min_len):
            if st > min_strength:
                vert.append(Line(x, s, x, e - 1, st))
    return horiz, vert


def merge_parallel(lines: List[Line], merge_px: int) -> List[Line]:
    """
    Collapse runs lying within `merge_px` of each other with overlapping spans,
    keeping the strongest. A Sobel step edge shows up on two adjacent rows.
    """
    if not lines:
        return []
    horizontal = lines[0].horizontal
    pos = (lambda l: l.y1) if horizontal else (lambda l: l.x1)
    span = (lambda l: (l.x1, l.x2)) if horizontal else (lambda l: (l.y1, l.y2))

    kept: List[Line] = []
    for ln in sorted(lines, key=lambda l: (pos(l), span(l)[0])):
        a0, a1 = span(ln)
        replaced = False
        i = len(kept) - 1
        while i >= 0 and pos(ln) - pos(kept[i]) <= merge_px:
            b0, b1 = span(kept[i])
            if a0 <= b1 and b0 <= a1:
                if ln.strength > kept[i].strength:
                    kept[i] = ln
                replaced = True
                break
            i -= 1
        if not replaced:
            kept.append(ln)
    return kept


def _strongest(lines: List[Line], limit: int) -> List[Line]:
    ranked = sorted(lines, key=lambda l: (l.strength, l.length), reverse=True)[:limit]
    return sorted(ranked, key=lambda l: (l.y1, l.x1))


# ----------------------------------------------------------------------------- #
# Rectangle composition                                                          #
# ----------------------------------------------------------------------------- #

def lines_overlap(h: Line, v: Line, tol: int) -> bool:
    """Horizontal `h` spans the column of vertical `v` and `v` spans the row of `h`."""
    return (h.x1 <= v.x1 + tol and h.x2 >= v.x1 - tol and
            v.y1 <= h.y1 + tol and v.y2 >= h.y1 - tol)


def side_coverage(strong: np.ndarray, b: Bounds) -> float:
    """Fraction of the rectangle's perimeter pixels set in the boolean edge mask `strong`."""
    H, W = strong.shape[:2]
    x0, y0 = max(0, b.x), max(0, b.y)
    x1, y1 = min(W - 1, b.x2), min(H - 1, b.y2)
    if x1 <= x0 or y1 <= y0:
        return 0.0
    hits = (strong[y0, x0:x1 + 1].sum() + strong[y1, x0:x1 + 1].sum() +
            strong[y0:y1 + 1, x0].sum() + strong[y0:y1 + 1, x1].sum())
    total = 2 * (x1 - x0 + 1) + 2 * (y1 - y0 + 1)
    return float(hits) / float(total)


def compose_rectangles(horiz: List[Line], vert: List[Line], c: Dict, target: float,
                       token: Optional[CancelToken] = None) -> List[Tuple[Bounds, float]]:
    """Every (h1, h2, v1, v2) quad whose four lines mutually overlap -> (bounds, mean line strength)."""
    tol = int(c["overlap_tol"])
    min_dy = int(c["min_h_separation"])
    min_dx = int(c["min_v_separation"])
    aspect_tol = float(c["aspect_tol"])
    min_area = int(c["min_card_area"])

    compat = [[j for j, v in enumerate(vert) if lines_overlap(h, v, tol)] for h in horiz]

    out: List[Tuple[Bounds, float]] = []
    for i in range(len(horiz) - 1):
        check(token)
        h1 = horiz[i]
        for j in range(i + 1, len(horiz)):
            h2 = horiz[j]
            if abs(h1.y1 - h2.y1) < min_dy:
                continue
            both = sorted(set(compat[i]).intersection(compat[j]))
            for a in range(len(both) - 1):
                v1 = vert[both[a]]
                for b in range(a + 1, len(both)):
                    v2 = vert[both[b]]
                    if abs(v1.x1 - v2.x1) < min_dx:
                        continue
                    w = abs(v2.x1 - v1.x1)
                    h = abs(h2.y1 - h1.y1)
                    if not aspect_ok(w, h, aspect_tol, target) or w * h < min_area:
                        continue
                    bounds = Bounds(min(v1.x1, v2.x1), min(h1.y1, h2.y1), w, h)
                    avg = (h1.strength + h2.strength + v1.strength + v2.strength) / 4.0
                    out.append((bounds, avg))
    return out


class HoughDetector:
    """Straight-edge runs composed into axis-aligned rectangles."""

    method = HOUGH

    def __init__(self, cfg: Optional[Dict] = None) -> None:
        self.cfg = merge_cfg(cfg)
        self.target = float(self.cfg["card_aspect"])

    def detect(self, image: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        c = self.cfg["hough"]
        rgba = to_rgba(image)
        edges = edge_map(rgba)

        horiz, vert = extract_lines(edges, c, token)
        raw = (len(horiz), len(vert))
        horiz = _strongest(merge_parallel(horiz, int(c["merge_px"])), int(c["max_lines"]))
        vert = _strongest(merge_parallel(vert, int(c["merge_px"])), int(c["max_lines"]))

        rects = compose_rectangles(horiz, vert, c, self.target, token)
        strong = edges > float(c["edge_threshold"])
        scored = []
        for b, avg in rects:
            conf = min(float(c["max_confidence"]), avg / 100.0)
            coverage = side_coverage(strong, b)
            scored.append((conf, coverage, -abs(b.aspect_ratio - self.target), b, avg))
        scored.sort(key=lambda r: r[:3], reverse=True)
        kept = suppress_overlaps(scored, key=lambda r: r[3], thresh=float(c["suppress_iou"]),
                                 limit=int(c["max_results"]))
        logger.debug(f"hough: runs={raw} lines={len(horiz)}/{len(vert)} quads={len(rects)} kept={len(kept)}")

        return [
            DetectedCard(
                id=make_card_id(self.method, i, b),
                bounds=b,
                confidence=conf,
                method=self.method,
                line_strength=avg,
                rectangular_score=coverage,
            )
            for i, (conf, coverage, _, b, avg) in enumerate(kept)
        ]
