"""
Mask rasterization for polymask.

Fills a normalized polygon into a single-channel alpha raster, optionally
smoothed and feathered, for the compositor to use as a layer mask.
"""

import cv2
import numpy as np

from polymask.geometry.smooth import bake_smoothed_polygon, translate_polygon
from polymask.tracer import get_tracer, trace


# Fixed-point fractional bits passed to fillPoly for sub-pixel vertices
SUBPIXEL_SHIFT = 4

# Coverage samples per pixel along each axis
SUPERSAMPLE = 4


def empty_mask(width, height):
    """Fully transparent alpha raster."""
    return np.zeros((int(height), int(width)), dtype=np.uint8)


@trace(label="rasterize_mask")
def rasterize_mask(path, width, height, feather=0.0, smoothing=0.0, offset=(0.0, 0.0),
                   antialias=True):
    """
    Rasterize a normalized polygon into a uint8 alpha mask.

    Args:
        path: normalized polygon [[x, y], ...]
        width, height: raster size in pixels
        feather: Gaussian blur sigma in pixels, 0 for a hard edge
        smoothing: Catmull-Rom smoothing strength in [0, 1]; 0 keeps
            straight edges
        offset: normalized [dx, dy] applied before filling
        antialias: keep fractional edge coverage; otherwise a pixel is
            opaque when at least half of it is covered

    Returns:
        (height, width) uint8 array, 255 inside the polygon and 0 outside.
        Polygons with fewer than 3 points give an all-zero raster.
    """
    tracer = get_tracer()
    mask = empty_mask(width, height)

    if len(path) < 3 or mask.size == 0:
        tracer.event(f"Polygon has {len(path)} points, returning empty mask")
        return mask

    if smoothing > 0:
        outline = bake_smoothed_polygon(path, smoothing, offset)
    else:
        outline = translate_polygon(path, offset)

    mask = fill_coverage(outline, width, height)
    if not antialias:
        mask = np.where(mask >= 128, 255, 0).astype(np.uint8)

    if feather > 0:
        mask = apply_feather(mask, feather)

    tracer.event(f"Mask {width}x{height}: {len(outline)} vertices, coverage={np.count_nonzero(mask) / mask.size:.3f}")
    return mask


def fill_coverage(outline, width, height):
    """
    Fraction of each pixel covered by a normalized polygon, scaled to 0..255.

    The polygon is filled on a grid SUPERSAMPLE times finer than the raster
    and each block of samples is averaged down to one pixel. A sample is
    inside when its centre is, so vertex x lands on sample coordinate
    x * width * SUPERSAMPLE - 0.5. An edge on a pixel boundary then leaves
    the pixel beyond it at most one sample column of coverage.
    """
    scale = np.array([width, height], dtype=np.float64) * SUPERSAMPLE
    pts = np.asarray(outline, dtype=np.float64) * scale - 0.5
    fixed = np.round(pts * (1 << SUBPIXEL_SHIFT)).astype(np.int32)

    samples = np.zeros((int(height) * SUPERSAMPLE, int(width) * SUPERSAMPLE), dtype=np.uint8)
    cv2.fillPoly(samples, [fixed.reshape(-1, 1, 2)], 255, lineType=cv2.LINE_8, shift=SUBPIXEL_SHIFT)

    return cv2.resize(samples, (int(width), int(height)), interpolation=cv2.INTER_AREA)


def apply_feather(mask, radius):
    """Soften mask edges with a Gaussian blur of the given sigma."""
    if radius <= 0:
        return mask
    return cv2.GaussianBlur(mask, (0, 0), sigmaX=float(radius), sigmaY=float(radius),
                            borderType=cv2.BORDER_CONSTANT)


def rasterize_settings(settings, width, height, antialias=True):
    """
    Rasterize a layer's MaskSettings.

    Disabled masks and masks without a shape produce an empty raster.
    """
    if not settings.enabled or not settings.has_shape:
        return empty_mask(width, height)

    return rasterize_mask(
        settings.path,
        width,
        height,
        feather=settings.feather,
        smoothing=settings.smoothing,
        offset=settings.offset,
        antialias=antialias,
    )


def is_point_in_polygon(point, polygon):
    """
    Even-odd ray casting test for a point against a closed polygon.
    """
    x, y = point
    inside = False
    n = len(polygon)

    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i

    return inside
