# cardscan/geometry/rects.py
from __future__ import annotations
from typing import Callable, List, Sequence, TypeVar

from cardscan.core.contracts import Bounds, CARD_ASPECT

T = TypeVar("T")


def iou(a: Bounds, b: Bounds) -> float:
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x2, b.x2)
    y2 = min(a.y2, b.y2)
    if x2 <= x1 or y2 <= y1:
        return 0.0
    inter = float((x2 - x1) * (y2 - y1))
    return inter / (a.area + b.area - inter)


def aspect_ok(width: float, height: float, tol: float, target: float = CARD_ASPECT) -> bool:
    if width <= 0 or height <= 0:
        return False
    return abs(width / float(height) - target) <= tol


def suppress_overlaps(items: Sequence[T], key: Callable[[T], Bounds], thresh: float,
                      limit: int = 0) -> List[T]:
    """
    Greedy overlap suppression. `items` must already be sorted best-first;
    an item is dropped when its IoU with any kept item exceeds `thresh`.
    """
    kept: List[T] = []
    for it in items:
        b = key(it)
        if any(iou(b, key(k)) > thresh for k in kept):
            continue
        kept.append(it)
        if limit and len(kept) >= limit:
            break
    return kept


class _UnionFind:
    def __init__(self, n: int) -> None:
        self.parent = list(range(n))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, i: int, j: int) -> None:
        ri, rj = self.find(i), self.find(j)
        if ri != rj:
            # keep the lower index as root so group order follows input order
            if rj < ri:
                ri, rj = rj, ri
            self.parent[rj] = ri


def group_union_find(boxes: Sequence[Bounds], thresh: float) -> List[List[int]]:
    """Connected components of the IoU > thresh graph, as lists of indices."""
    n = len(boxes)
    uf = _UnionFind(n)
    for i in range(n):
        for j in range(i + 1, n):
            if iou(boxes[i], boxes[j]) > thresh:
                uf.union(i, j)
    groups: dict = {}
    for i in range(n):
        groups.setdefault(uf.find(i), []).append(i)
    return [groups[r] for r in sorted(groups)]


def group_single_pass(boxes: Sequence[Bounds], thresh: float) -> List[List[int]]:
    """Seed-based grouping: each unassigned box collects every unassigned box overlapping it."""
    n = len(boxes)
    taken = [False] * n
    groups: List[List[int]] = []
    for i in range(n):
        if taken[i]:
            continue
        taken[i] = True
        g = [i]
        for j in range(n):
            if not taken[j] and iou(boxes[i], boxes[j]) > thresh:
                taken[j] = True
                g.append(j)
        groups.append(g)
    return groups


def suggest_crop_bounds(width: int, height: int, aspect: float = CARD_ASPECT) -> Bounds:
    """
    Centred card-shaped crop box used when nothing was detected:
    40% of the image width, shrunk to 70% of the height if taller than that.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image size must be positive, got {width}x{height}")
    cw = width * 0.4
    ch = cw / aspect
    if ch > height * 0.7:
        ch = height * 0.7
        cw = ch * aspect
    x = max(0, int(round((width - cw) / 2.0)))
    y = max(0, int(round((height - ch) / 2.0)))
    return Bounds(x, y, max(1, int(round(min(cw, width)))), max(1, int(round(min(ch, height)))))
