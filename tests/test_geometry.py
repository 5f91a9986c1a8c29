import numpy as np
import pytest

from cardscan.core.contracts import Bounds
from cardscan.geometry.edges import edge_map
from cardscan.geometry.rects import (aspect_ok, group_single_pass, group_union_find, iou,
                                     suggest_crop_bounds, suppress_overlaps)

from conftest import blank


def test_edge_map_uniform_is_zero():
    em = edge_map(blank(40, 30, gray=200))
    assert em.shape == (30, 40)
    assert em.dtype == np.float32
    assert float(em.max()) == 0.0


def test_edge_map_step_and_border():
    img = blank(20, 10, gray=0)
    img[:, 10:, :3] = 90
    em = edge_map(img)
    # 3x3 Sobel: 4 * 90 on both sides of the step
    assert em[5, 9] == pytest.approx(360.0)
    assert em[5, 10] == pytest.approx(360.0)
    assert em[5, 5] == 0.0
    assert not em[0].any() and not em[-1].any()
    assert not em[:, 0].any() and not em[:, -1].any()


def test_edge_map_tiny_image():
    assert not edge_map(blank(2, 2)).any()


def test_iou_basic():
    a = Bounds(0, 0, 10, 10)
    assert iou(a, a) == 1.0
    assert iou(a, Bounds(10, 0, 10, 10)) == 0.0
    assert iou(a, Bounds(5, 0, 10, 10)) == pytest.approx(50 / 150)


def test_aspect_ok():
    assert aspect_ok(250, 350, 0.01)
    assert not aspect_ok(350, 250, 0.15)
    assert not aspect_ok(0, 10, 1.0)


def test_suppress_overlaps_keeps_best_first():
    boxes = [Bounds(0, 0, 100, 140), Bounds(5, 5, 100, 140), Bounds(300, 0, 100, 140), Bounds(302, 0, 100, 140)]
    kept = suppress_overlaps(boxes, key=lambda b: b, thresh=0.3)
    assert kept == [boxes[0], boxes[2]]
    assert suppress_overlaps(boxes, key=lambda b: b, thresh=0.3, limit=1) == [boxes[0]]


def test_grouping_strategies_differ_on_chains():
    # 0~1 and 1~2 overlap, 0 and 2 do not
    boxes = [Bounds(0, 0, 100, 100), Bounds(40, 0, 100, 100), Bounds(80, 0, 100, 100), Bounds(500, 0, 50, 50)]
    assert iou(boxes[0], boxes[2]) < 0.3
    assert group_union_find(boxes, 0.3) == [[0, 1, 2], [3]]
    assert group_single_pass(boxes, 0.3) == [[0, 1], [2], [3]]


def test_grouping_empty():
    assert group_union_find([], 0.3) == []
    assert group_single_pass([], 0.3) == []


def test_suggest_crop_bounds():
    assert suggest_crop_bounds(800, 1120).as_tuple() == (240, 336, 320, 448)
    # wide image: limited by 70% of the height
    assert suggest_crop_bounds(1000, 500).as_tuple() == (375, 75, 250, 350)
    with pytest.raises(ValueError):
        suggest_crop_bounds(0, 100)
