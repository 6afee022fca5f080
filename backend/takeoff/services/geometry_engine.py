"""
geometry_engine.py — Length / area / centroid math over measurement points.

Works in page-pixel space; callers divide by the drawing scale.

Point sequences come in two flavours:
  - sequential: edges join consecutive points (shapes also close last → first)
  - graph:      at least one point carries ``connects_to``; edges are exactly
                the (source, target) pairs listed there, nothing else

Curved edges are quadratic Bezier segments. The control point lives on the
point the edge terminates at.
"""

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from takeoff import config
from takeoff.models.takeoff_schema import Point


# ---------------------------------------------------------------------------
# 3-point Gauss–Legendre rule mapped from [-1, 1] onto [0, 1]
#   abscissae ≈ 0.1127016654, 0.5, 0.8872983346
#   weights   ≈ 0.2777778,   0.4444444, 0.2777778
# ---------------------------------------------------------------------------
_GL_X, _GL_W = np.polynomial.legendre.leggauss(3)
GAUSS_LEGENDRE_T: np.ndarray = (_GL_X + 1.0) / 2.0
GAUSS_LEGENDRE_W: np.ndarray = _GL_W / 2.0


def _xy(p) -> np.ndarray:
    return np.array([p.x, p.y], dtype=float)


def distance(p1, p2) -> float:
    """Euclidean distance between two points."""
    return math.hypot(p2.x - p1.x, p2.y - p1.y)


def bezier_point(start, control, end, t: float) -> Tuple[float, float]:
    """Point on the quadratic Bezier (start, control, end) at parameter t."""
    u = 1.0 - t
    x = u * u * start.x + 2 * u * t * control.x + t * t * end.x
    y = u * u * start.y + 2 * u * t * control.y + t * t * end.y
    return x, y


def bezier_length(start, control, end) -> float:
    """
    Arc length of a quadratic Bezier.

    B'(t) = 2(1-t)(C-P0) + 2t(P2-C); the length is ∫|B'(t)|dt over [0, 1],
    integrated with the fixed 3-point Gauss–Legendre rule.
    """
    p0, c, p2 = _xy(start), _xy(control), _xy(end)
    t = GAUSS_LEGENDRE_T[:, None]
    derivative = 2 * (1 - t) * (c - p0) + 2 * t * (p2 - c)
    speeds = np.linalg.norm(derivative, axis=1)
    return float(np.dot(GAUSS_LEGENDRE_W, speeds))


def edge_length(source: Point, target: Point) -> float:
    """Length of the edge source → target, curved if target has a control point."""
    if target.control_point is not None:
        return bezier_length(source, target.control_point, target)
    return distance(source, target)


def is_graph(points: Sequence[Point]) -> bool:
    """True if any point declares explicit outgoing edges."""
    return any(p.connects_to for p in points)


def graph_edges(points: Sequence[Point]) -> List[Tuple[int, int]]:
    """(source, target) index pairs of a graph path; dangling indices are dropped."""
    n = len(points)
    edges = []
    for i, p in enumerate(points):
        for j in p.connects_to or ():
            if 0 <= j < n:
                edges.append((i, j))
    return edges


def path_length(points: Sequence[Point]) -> float:
    """
    Total length of a path.

    Graph paths sum every connects_to edge (branches included); sequential
    paths sum consecutive pairs. Fewer than two points → 0.
    """
    if len(points) < 2:
        return 0.0

    if is_graph(points):
        return sum(edge_length(points[i], points[j]) for i, j in graph_edges(points))

    return sum(edge_length(points[i - 1], points[i]) for i in range(1, len(points)))


def _area_ring(points: Sequence[Point]) -> np.ndarray:
    """
    Closed vertex ring for the shoelace sum.

    A curved edge (terminal point has a control point) is replaced by two
    straight edges through the curve's midpoint.
    """
    n = len(points)
    ring = []
    for i in range(n):
        a = points[i]
        b = points[(i + 1) % n]
        ring.append((a.x, a.y))
        if b.control_point is not None:
            ring.append(bezier_point(a, b.control_point, b, 0.5))
    return np.array(ring, dtype=float)


def _signed_area(ring: np.ndarray) -> float:
    x, y = ring[:, 0], ring[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def polygon_area(points: Sequence[Point]) -> float:
    """Absolute area of the implicitly closed polygon (curve-corrected)."""
    if len(points) < 3:
        return 0.0
    return abs(_signed_area(_area_ring(points)))


def polygon_centroid(points: Sequence[Point]) -> Point:
    """
    Area-weighted centroid.

    Empty → origin; fewer than 3 points → arithmetic mean;
    zero-area polygon → first point.
    """
    if not points:
        return Point(x=0.0, y=0.0)

    coords = np.array([(p.x, p.y) for p in points], dtype=float)
    if len(points) < 3:
        mean = coords.mean(axis=0)
        return Point(x=float(mean[0]), y=float(mean[1]))

    x, y = coords[:, 0], coords[:, 1]
    xn, yn = np.roll(x, -1), np.roll(y, -1)
    cross = x * yn - xn * y
    area = 0.5 * float(cross.sum())
    if abs(area) < config.AREA_EPSILON:
        return Point(x=points[0].x, y=points[0].y)

    cx = float(((x + xn) * cross).sum()) / (6.0 * area)
    cy = float(((y + yn) * cross).sum()) / (6.0 * area)
    return Point(x=cx, y=cy)


def closed_ring(points: Sequence[Point]) -> List[Point]:
    """
    Point list with the first point appended, for perimeter measurement.

    Graph shapes are returned as-is: their connects_to edges already close
    the outline, and a copied first point would repeat its edges.
    """
    if not points or is_graph(points):
        return list(points)
    return list(points) + [points[0]]


def pitch_factor(pitch: Optional[float]) -> float:
    """Slope multiplier for a roof pitch (rise per 12 in); 1.0 when flat or unset."""
    if pitch is None or pitch <= 0:
        return 1.0
    return math.sqrt(1.0 + (pitch / config.PITCH_RUN_INCHES) ** 2)
