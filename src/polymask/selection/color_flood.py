"""
Flood-fill colour selection for polymask.

Grows a 4-connected region from a seed pixel by colour distance and turns
its boundary into a normalized polygon for mask editing.
"""

import cv2
import numpy as np

from polymask.config import ColorSelectionConfig, BoundaryConfig
from polymask.geometry.boundary import extract_boundary
from polymask.geometry.resample import clamp_point_count
from polymask.geometry.simplify import simplify_closed_polygon
from polymask.models import ColorSelectionResult
from polymask.tracer import get_tracer, trace


COLOR_CHANNELS = 3
MAX_COLOR_DISTANCE = np.sqrt(255.0 * 255.0 * COLOR_CHANNELS)


def color_distance_map(image, seed_color):
    """
    Normalized Euclidean RGB distance of every pixel to seed_color.

    Returns a float array in [0, 1] with the image's height and width.
    """
    rgb = np.asarray(image)[..., :COLOR_CHANNELS].astype(np.float64)
    diff = rgb - np.asarray(seed_color, dtype=np.float64)
    return np.sqrt(np.sum(diff * diff, axis=-1)) / MAX_COLOR_DISTANCE


def flood_fill_region(within, seed_x, seed_y):
    """
    4-connected fill over a boolean admission raster.

    The admission raster is labelled into connected components once and the
    component holding the seed is returned.

    Returns:
        boolean raster of selected pixels
    """
    if not within[seed_y, seed_x]:
        return np.zeros(within.shape, dtype=bool)

    _, labels = cv2.connectedComponents(within.astype(np.uint8), connectivity=4)
    return labels == labels[seed_y, seed_x]


def stride_points(points, max_points):
    """Keep at most max_points points by uniform index striding."""
    if len(points) <= max_points:
        return list(points)

    step = len(points) / max_points
    return [points[int(np.floor(i * step))] for i in range(max_points)]


@trace(label="select_by_color")
def select_by_color(image, seed_x, seed_y, tolerance=None, max_points=None,
                    config=None, boundary_config=None):
    """
    Select the connected region of similar colour around a seed point.

    Args:
        image: (H, W, 3) or (H, W, 4) uint8 array; alpha is ignored
        seed_x, seed_y: seed position in normalized image coordinates
        tolerance: fraction of the maximum RGB distance, clamped to [0, 1]
        max_points: output vertex budget, clamped to the configured range
        config: ColorSelectionConfig
        boundary_config: BoundaryConfig (threshold and ordering strategy)

    Returns:
        ColorSelectionResult, or None when no usable region was found
    """
    tracer = get_tracer()
    config = config or ColorSelectionConfig()
    boundary_config = boundary_config or BoundaryConfig()

    if tolerance is None:
        tolerance = config.tolerance
    if max_points is None:
        max_points = config.max_points

    img = np.asarray(image)
    if img.ndim != 3 or img.shape[0] == 0 or img.shape[1] == 0:
        return None

    height, width = img.shape[:2]
    px = int(min(max(np.floor(seed_x * width), 0), width - 1))
    py = int(min(max(np.floor(seed_y * height), 0), height - 1))

    threshold = min(max(float(tolerance), 0.0), 1.0)
    seed_color = img[py, px, :COLOR_CHANNELS]

    with tracer.span("flood_fill", module="color_flood"):
        within = color_distance_map(img, seed_color) <= threshold
        selected = flood_fill_region(within, px, py)
        pixel_count = int(selected.sum())
        tracer.event(f"Seed ({px}, {py}) selected {pixel_count} pixels at tolerance {threshold:.3f}")

    if pixel_count < config.min_region_pixels:
        tracer.event(f"Region too small ({pixel_count} px), no selection", level="WARN")
        return None

    boundary = extract_boundary(
        selected, ordering=boundary_config.ordering, trace_epsilon=boundary_config.trace_epsilon,
    )
    if len(boundary) < 3:
        tracer.event(f"Too few boundary pixels ({len(boundary)}), no selection", level="WARN")
        return None

    points = boundary.tolist()
    if config.simplify_epsilon > 0:
        simplified = simplify_closed_polygon(points, config.simplify_epsilon)
        if len(simplified) >= 3:
            points = simplified

    limit = clamp_point_count(max_points, config.min_points, config.max_points_limit)
    points = stride_points(points, limit)

    path = [
        [min(max(x / width, 0.0), 1.0), min(max(y / height, 0.0), 1.0)]
        for x, y in points
    ]
    tracer.event(f"Selection polygon: {len(boundary)} boundary px -> {len(path)} points")

    return ColorSelectionResult(path=path, pixel_count=pixel_count)
