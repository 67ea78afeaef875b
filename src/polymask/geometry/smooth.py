"""
Polygon smoothing for polymask.

Two independent operations on closed polygons: iterative neighbour
averaging (used while dragging and during detection decode) and
Catmull-Rom curves converted to cubic Beziers (used for preview paths and
for baking a smoothed polygon at export time). Also hosts the offset and
expansion transforms that are applied alongside smoothing.
"""

import math

import numpy as np

from polymask.models import CubicBezier, compute_centroid


MIN_SAMPLES_PER_EDGE = 4
MAX_SAMPLES_PER_EDGE = 16


def smooth_polygon(points, iterations=1):
    """
    Smooth a closed polygon by neighbour averaging, preserving point count.

    Each pass replaces every vertex with (prev + 2 * self + next) / 4,
    wrapping around at both ends.
    """
    if len(points) < 3 or iterations <= 0:
        return [list(p) for p in points]

    current = np.asarray(points, dtype=np.float64)

    for _ in range(iterations):
        prev = np.roll(current, 1, axis=0)
        nxt = np.roll(current, -1, axis=0)
        current = (prev + 2 * current + nxt) / 4

    return current.tolist()


def catmull_rom_segments(points, smoothing):
    """
    Convert a closed polygon into one cubic Bezier per edge.

    For edge p1 -> p2 with neighbours p0 and p3, the control points are
    cp1 = p1 + (p2 - p0) / 6 * 2t and cp2 = p2 - (p3 - p1) / 6 * 2t,
    with tension t = 0.5 * smoothing.

    Returns:
        list of CubicBezier, empty for fewer than 3 points
    """
    n = len(points)
    if n < 3:
        return []

    pts = np.asarray(points, dtype=np.float64)
    tension = 0.5 * float(smoothing)

    segments = []
    for i in range(n):
        p0 = pts[(i - 1) % n]
        p1 = pts[i]
        p2 = pts[(i + 1) % n]
        p3 = pts[(i + 2) % n]

        cp1 = p1 + (p2 - p0) / 6 * 2 * tension
        cp2 = p2 - (p3 - p1) / 6 * 2 * tension

        segments.append(CubicBezier(
            p0=p1.tolist(),
            p1=cp1.tolist(),
            p2=cp2.tolist(),
            p3=p2.tolist(),
        ))

    return segments


def samples_per_edge(smoothing):
    """Number of baked samples per edge, scaling from 4 to 16 with smoothing."""
    s = min(1.0, max(0.0, float(smoothing)))
    return int(round(MIN_SAMPLES_PER_EDGE + (MAX_SAMPLES_PER_EDGE - MIN_SAMPLES_PER_EDGE) * s))


def evaluate_bezier(bezier, t):
    """Evaluate a cubic Bezier at parameter t."""
    p0 = np.array(bezier.p0)
    p1 = np.array(bezier.p1)
    p2 = np.array(bezier.p2)
    p3 = np.array(bezier.p3)

    mt = 1 - t
    return (mt ** 3 * p0 + 3 * mt ** 2 * t * p1 + 3 * mt * t ** 2 * p2 + t ** 3 * p3).tolist()


def bake_smoothed_polygon(points, smoothing, offset=(0.0, 0.0)):
    """
    Bake a smoothed, offset polygon into plain vertices.

    With smoothing <= 0 the input vertices are returned as-is (translated by
    offset), so a zero-smoothing, zero-offset bake is an exact pass-through.
    Otherwise every Catmull-Rom edge is sampled at evenly spaced parameters,
    which lets consumers draw the result with straight edges only.
    """
    if smoothing <= 0 or len(points) < 3:
        return translate_polygon(points, offset)

    count = samples_per_edge(smoothing)
    baked = []
    for segment in catmull_rom_segments(points, smoothing):
        for k in range(count):
            baked.append(evaluate_bezier(segment, k / count))

    return translate_polygon(baked, offset)


def translate_polygon(points, offset):
    """Translate every point by a fixed 2D vector."""
    dx, dy = float(offset[0]), float(offset[1])
    if dx == 0 and dy == 0:
        return [[p[0], p[1]] for p in points]
    return [[p[0] + dx, p[1] + dy] for p in points]


def expand_polygon(points, percent):
    """
    Scale a normalized polygon away from its vertex centroid.

    Every vertex moves by a factor of (1 + percent / 100) and is clamped back
    into [0, 1]. Non-finite, non-positive or unit factors leave the polygon
    unchanged.
    """
    if len(points) == 0:
        return []

    factor = 1 + percent / 100
    if not math.isfinite(factor) or factor <= 0 or abs(factor - 1) < 1e-6:
        return [list(p) for p in points]

    pts = np.asarray(points, dtype=np.float64)
    centroid = np.asarray(compute_centroid(pts))
    expanded = centroid + (pts - centroid) * factor

    return np.clip(expanded, 0.0, 1.0).tolist()


def polygon_svg_path(points, smoothing=0.0, width=1.0, height=1.0):
    """
    Build an SVG path command for a closed polygon.

    Straight edges are emitted for zero smoothing, cubic curves otherwise.
    Coordinates are multiplied by width/height, so normalized polygons can be
    drawn directly on a pixel canvas.
    """
    if len(points) < 3:
        return ""

    def fmt(p):
        return f"{p[0] * width:.2f} {p[1] * height:.2f}"

    parts = [f"M {fmt(points[0])}"]

    if smoothing <= 0:
        for p in points[1:]:
            parts.append(f"L {fmt(p)}")
    else:
        for bez in catmull_rom_segments(points, smoothing):
            parts.append(f"C {fmt(bez.p1)} {fmt(bez.p2)} {fmt(bez.p3)}")

    parts.append("Z")
    return " ".join(parts)
