"""
Polygon simplification using the Ramer-Douglas-Peucker algorithm.

Reduces dense boundary point sequences while preserving shape within
tolerance, plus the near-duplicate filter used around smoothing.
"""

import numpy as np


def simplify_closed_polygon(points, epsilon):
    """
    RDP simplification of a closed ring.

    Plain RDP treats its input as an open chain, so the ring's first point
    always survives even when it lies mid-edge. Here the ring is split into
    two chains between a pair of far-apart vertices, each chain is simplified
    on its own and the halves are joined again.

    Args:
        points: ring of [x, y] points, first point not repeated at the end
        epsilon: maximum perpendicular distance threshold

    Returns:
        simplified list of points, starting at one of the split vertices
    """
    ring = _as_point_list(points)
    if len(ring) <= 3:
        return ring

    pts = np.asarray(ring, dtype=np.float64)

    start = int(np.argmax(np.linalg.norm(pts - pts[0], axis=1)))
    ring = ring[start:] + ring[:start]
    pts = np.roll(pts, -start, axis=0)

    split = int(np.argmax(np.linalg.norm(pts - pts[0], axis=1)))
    if split == 0:
        return [ring[0]]

    left = rdp_simplify(ring[:split + 1], epsilon)
    right = rdp_simplify(ring[split:] + [ring[0]], epsilon)

    # Each half ends on the vertex the other half starts with
    return list(left[:-1]) + list(right[:-1])


def rdp_simplify(points, epsilon):
    """
    Ramer-Douglas-Peucker algorithm for point sequence simplification.

    Recursively removes points that are within epsilon distance
    of the segment between the sequence endpoints.

    Args:
        points: list of [x, y] points
        epsilon: maximum perpendicular distance threshold

    Returns:
        simplified list of points
    """
    if len(points) <= 2:
        return points

    points_arr = np.asarray(points, dtype=np.float64)

    distances = _perpendicular_distances(points_arr, points_arr[0], points_arr[-1])
    max_idx = int(np.argmax(distances))
    max_dist = distances[max_idx]

    if max_dist > epsilon:
        left = rdp_simplify(points[:max_idx + 1], epsilon)
        right = rdp_simplify(points[max_idx:], epsilon)

        # Joint point appears at the end of left and the start of right
        return list(left[:-1]) + list(right)

    return [points[0], points[-1]]


def _perpendicular_distances(points, start, end):
    """
    Compute distances from each point to the segment from start to end.
    """
    line_vec = end - start
    line_len = np.linalg.norm(line_vec)

    if line_len == 0:
        return np.linalg.norm(points - start, axis=1)

    line_unit = line_vec / line_len

    # Project onto the chord, clamped to the segment
    projections = np.clip(np.dot(points - start, line_unit), 0, line_len)
    nearest = start + np.outer(projections, line_unit)

    return np.linalg.norm(points - nearest, axis=1)


def remove_sequential_duplicates(points, min_distance):
    """
    Remove consecutive near-duplicate points from a closed polygon.

    A point is kept only when it is at least min_distance from the last
    kept point. The final point is dropped if it lands within min_distance
    of the first, since the polygon wraps around.
    """
    if len(points) == 0:
        return []

    result = [list(points[0])]

    for point in points[1:]:
        last = result[-1]
        if np.hypot(point[0] - last[0], point[1] - last[1]) >= min_distance:
            result.append(list(point))

    if len(result) > 1:
        first = result[0]
        last = result[-1]
        if np.hypot(first[0] - last[0], first[1] - last[1]) < min_distance:
            result.pop()

    return result


def _as_point_list(points):
    if isinstance(points, np.ndarray):
        return points.tolist()
    return list(points)
