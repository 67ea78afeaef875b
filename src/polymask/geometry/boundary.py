"""
Raster boundary extraction for polymask.

Given a membership raster (boolean or probability), return the boundary
points of the region in raster-pixel [x, y] coordinates. Used by both the
colour flood selector and the detection mask decoder.

Ordering of the boundary is delegated to a BoundaryOrdering strategy. The
default angular sort is fast but only correct for star-shaped regions;
ContourOrdering follows the actual outline and handles concave shapes;
TraceOrdering walks the outline pixel by pixel and simplifies the walk.
"""

from abc import ABC, abstractmethod

import cv2
import numpy as np

from polymask.geometry.simplify import rdp_simplify
from polymask.models import compute_centroid
from polymask.tracer import get_tracer


# Clockwise from "up", in (dx, dy) image coordinates
DIRECTIONS = [
    (0, -1),
    (1, -1),
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
]


def membership_mask(membership, threshold=0.5):
    """Boolean raster of pixels strictly above threshold."""
    arr = np.asarray(membership)
    if arr.dtype == np.bool_:
        return arr
    return arr > threshold


def extract_edge_pixels(membership, threshold=0.5):
    """
    Collect boundary pixels of a membership raster.

    A pixel is on the boundary if it is above threshold and at least one of
    its 4-neighbours is not; pixels on the raster edge count as bordering
    the outside.

    Returns:
        (N, 2) float array of [x, y] pixel coordinates in row-major order
    """
    inside = membership_mask(membership, threshold)
    if inside.ndim != 2 or inside.size == 0:
        return np.zeros((0, 2), dtype=np.float64)

    padded = np.pad(inside, 1, mode="constant", constant_values=False)
    interior = (
        padded[:-2, 1:-1] & padded[2:, 1:-1] &
        padded[1:-1, :-2] & padded[1:-1, 2:]
    )
    edge = inside & ~interior

    ys, xs = np.nonzero(edge)
    return np.column_stack([xs, ys]).astype(np.float64)


def sort_by_angle(points):
    """
    Order points by their angle around the centroid.

    Stable, so points sharing an angle keep their incoming order.
    """
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) == 0:
        return pts.reshape(0, 2)

    centroid = compute_centroid(pts)
    angles = np.arctan2(pts[:, 1] - centroid[1], pts[:, 0] - centroid[0])
    return pts[np.argsort(angles, kind="stable")]


def trace_ordered_boundary(membership, threshold=0.5):
    """
    Walk the region outline from its first pixel using 8-connectivity.

    Starts at the first above-threshold pixel in row-major order. At each
    step the eight directions are searched clockwise starting from the
    current heading and the walk moves to the first member neighbour. Stops
    when it returns to the start, gets stuck, or after width * height steps.

    Returns:
        list of [x, y] pixel coordinates, each pixel at most once
    """
    inside = membership_mask(membership, threshold)
    if inside.ndim != 2 or not inside.any():
        return []

    height, width = inside.shape
    start_y, start_x = (int(v) for v in np.argwhere(inside)[0])

    points = []
    visited = set()
    x, y = start_x, start_y
    dir_idx = 0
    max_iters = width * height
    iters = 0

    while True:
        if (x, y) not in visited:
            points.append([x, y])
            visited.add((x, y))

        found = False
        for i in range(8):
            next_dir = (dir_idx + i) % 8
            dx, dy = DIRECTIONS[next_dir]
            nx, ny = x + dx, y + dy
            if 0 <= nx < width and 0 <= ny < height and inside[ny, nx]:
                x, y = nx, ny
                dir_idx = next_dir
                found = True
                break

        if not found:
            break
        iters += 1
        if (x == start_x and y == start_y) or iters >= max_iters:
            break

    return points


class BoundaryOrdering(ABC):
    """Strategy that turns a membership raster into ordered boundary points."""

    name = ""

    @abstractmethod
    def order(self, membership, threshold=0.5, transform=None):
        """
        Return ordered boundary points of the region.

        Args:
            membership: 2D boolean or probability raster
            threshold: membership cut-off for non-boolean rasters
            transform: optional callable mapping an (N, 2) array of raster
                [x, y] points into the caller's output space; ordering is
                done in that space

        Returns:
            (N, 2) float array
        """


class AngularOrdering(BoundaryOrdering):
    """Edge pixels sorted by angle around their centroid."""

    name = "angular"

    def order(self, membership, threshold=0.5, transform=None):
        points = extract_edge_pixels(membership, threshold)
        if transform is not None and len(points):
            points = np.asarray(transform(points), dtype=np.float64)
        return sort_by_angle(points)


class ContourOrdering(BoundaryOrdering):
    """Outline of the largest region, followed pixel by pixel."""

    name = "contour"

    def order(self, membership, threshold=0.5, transform=None):
        inside = membership_mask(membership, threshold)
        if inside.ndim != 2 or not inside.any():
            return np.zeros((0, 2), dtype=np.float64)

        contours, _ = cv2.findContours(
            inside.astype(np.uint8), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE
        )
        if not contours:
            return np.zeros((0, 2), dtype=np.float64)

        largest = max(contours, key=len)
        points = largest.reshape(-1, 2).astype(np.float64)
        if transform is not None:
            points = np.asarray(transform(points), dtype=np.float64)
        return points


class TraceOrdering(BoundaryOrdering):
    """
    Outline walked from the first region pixel, then RDP-simplified.

    The walk only follows one side of thin or branching regions, so this
    suits compact blobs. epsilon is in raster pixels, before any transform.
    """

    name = "trace"

    def __init__(self, epsilon=2.0):
        self.epsilon = epsilon

    def order(self, membership, threshold=0.5, transform=None):
        points = trace_ordered_boundary(membership, threshold)
        if self.epsilon > 0:
            points = rdp_simplify(points, self.epsilon)

        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if transform is not None and len(points):
            points = np.asarray(transform(points), dtype=np.float64)
        return points


ORDERINGS = {
    AngularOrdering.name: AngularOrdering,
    ContourOrdering.name: ContourOrdering,
    TraceOrdering.name: TraceOrdering,
}


def get_ordering(name, trace_epsilon=2.0):
    """Instantiate a boundary ordering strategy by name."""
    if name == TraceOrdering.name:
        return TraceOrdering(trace_epsilon)
    try:
        return ORDERINGS[name]()
    except KeyError:
        raise ValueError(f"Unknown boundary ordering: {name!r} (expected one of {sorted(ORDERINGS)})") from None


def extract_boundary(membership, threshold=0.5, ordering=None, transform=None, trace_epsilon=2.0):
    """
    Extract ordered boundary points, defaulting to angular ordering.

    Callers must treat fewer than 3 returned points as a failed extraction.
    """
    tracer = get_tracer()

    if ordering is None:
        ordering = AngularOrdering()
    elif isinstance(ordering, str):
        ordering = get_ordering(ordering, trace_epsilon)

    points = ordering.order(membership, threshold=threshold, transform=transform)
    tracer.event(f"Boundary: {len(points)} points via {ordering.name} ordering", level="DEBUG")
    return points
