"""
Arc-length resampling of closed polygons.

Redistributes a polygon onto a fixed vertex budget so interactive handles
stay stable regardless of how dense the source boundary was.
"""

import numpy as np

# Edges shorter than this are treated as degenerate
MIN_SEGMENT_LENGTH = 1e-6


def clamp_point_count(count, minimum, maximum):
    """Round a requested vertex count and clamp it to [minimum, maximum]."""
    return int(max(minimum, min(maximum, int(np.floor(count + 0.5)))))


def resample_polygon(points, target_count):
    """
    Resample a closed polygon to exactly target_count points.

    Points are spaced evenly by arc length along the perimeter, including
    the closing edge from the last point back to the first.

    Args:
        points: list of [x, y] points (implicitly closed)
        target_count: number of output points

    Returns:
        list of target_count [x, y] points; empty if points is empty
    """
    n = len(points)
    if n == 0 or target_count <= 0:
        return []

    pts = np.asarray(points, dtype=np.float64)

    if n == 1:
        return [pts[0].tolist() for _ in range(target_count)]

    # Edge i runs from point i to point (i + 1) % n
    edges = np.roll(pts, -1, axis=0) - pts
    distances = np.hypot(edges[:, 0], edges[:, 1])
    cumulative = np.concatenate([[0.0], np.cumsum(distances)])
    total_length = cumulative[n]

    if total_length < MIN_SEGMENT_LENGTH:
        return [pts[0].tolist() for _ in range(target_count)]

    step = total_length / target_count
    resampled = []
    segment_index = 0

    for i in range(target_count):
        target_distance = min(i * step, total_length - MIN_SEGMENT_LENGTH)

        while segment_index < n - 1 and cumulative[segment_index + 1] <= target_distance:
            segment_index += 1

        segment_start = cumulative[segment_index]
        segment_length = distances[segment_index]

        if segment_length < MIN_SEGMENT_LENGTH:
            for candidate in range(segment_index + 1, n):
                if distances[candidate] >= MIN_SEGMENT_LENGTH:
                    segment_index = candidate
                    segment_start = cumulative[candidate]
                    segment_length = distances[candidate]
                    break

        if segment_length < MIN_SEGMENT_LENGTH:
            local_t = 0.0
        else:
            local_t = min(segment_length, max(0.0, target_distance - segment_start)) / segment_length

        start = pts[segment_index]
        end = pts[(segment_index + 1) % n]
        resampled.append((start + local_t * (end - start)).tolist())

    return resampled
