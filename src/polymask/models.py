"""
Pydantic data models for the polymask engine.

Polygons travel as [[x, y], ...] lists of normalized coordinates. The records
here wrap them with the metadata each call site needs and validate the
scalar knobs (confidence, smoothing, feather) on construction.
"""

import hashlib
from typing import List

from pydantic import BaseModel, ConfigDict, Field


# Display colours cycled over detections in output order
PALETTE = [
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#ec4899",
    "#14b8a6",
    "#f97316",
    "#06b6d4",
    "#84cc16",
]


class CubicBezier(BaseModel):
    """A single cubic Bezier curve segment."""
    p0: List[float] = Field(..., min_length=2, max_length=2)  # start point
    p1: List[float] = Field(..., min_length=2, max_length=2)  # control point 1
    p2: List[float] = Field(..., min_length=2, max_length=2)  # control point 2
    p3: List[float] = Field(..., min_length=2, max_length=2)  # end point


class BoundingBox(BaseModel):
    """Axis-aligned box in source-raster pixels (top-left corner + size)."""
    x: float
    y: float
    w: float
    h: float

    model_config = ConfigDict(extra="forbid", frozen=True)

    def as_tuple(self):
        return (self.x, self.y, self.w, self.h)

    @property
    def area(self):
        return self.w * self.h

    def normalized(self, width, height):
        """Return the box as fractions of a width x height raster."""
        return BoundingBox(x=self.x / width, y=self.y / height, w=self.w / width, h=self.h / height)


class Detection(BaseModel):
    """A decoded model output row that survived the confidence threshold."""
    bbox: BoundingBox
    confidence: float = Field(..., ge=0.0)
    coefficients: List[float] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def has_coefficients(self):
        return len(self.coefficients) > 0


class DetectedMask(BaseModel):
    """Final per-detection record handed back to the caller."""
    mask_id: str
    path: List[List[float]] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0)
    bbox: BoundingBox
    color: str

    model_config = ConfigDict(extra="forbid")


class ColorSelectionResult(BaseModel):
    """Polygon produced by a flood-fill colour selection."""
    path: List[List[float]]
    pixel_count: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid")


class LetterboxParams(BaseModel):
    """Mapping between source-image pixels and the square model input."""
    scale: float = Field(..., gt=0.0)
    offset_x: float = 0.0
    offset_y: float = 0.0
    original_width: int = Field(..., gt=0)
    original_height: int = Field(..., gt=0)
    target_size: int = 640

    model_config = ConfigDict(extra="forbid", frozen=True)

    def to_source(self, x, y):
        """Map a model-input point back to source-image pixels."""
        return (x - self.offset_x) / self.scale, (y - self.offset_y) / self.scale

    def to_model(self, x, y):
        """Map a source-image point into model-input pixels."""
        return x * self.scale + self.offset_x, y * self.scale + self.offset_y


class MaskSettings(BaseModel):
    """
    A layer's mask: raw control points plus re-appliable render knobs.

    Smoothing and offset are kept apart from the control points so repeated
    edits never compound. Instances are frozen; the with_* helpers return
    updated copies.
    """
    enabled: bool = True
    visible: bool = True
    path: List[List[float]] = Field(default_factory=list)
    smoothing: float = Field(default=0.0, ge=0.0, le=1.0)
    offset: List[float] = Field(default_factory=lambda: [0.0, 0.0], min_length=2, max_length=2)
    feather: float = Field(default=0.0, ge=0.0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def has_shape(self):
        return len(self.path) >= 3

    def rendered_path(self):
        """Derive the displayed polygon from the control points."""
        from polymask.geometry.smooth import bake_smoothed_polygon

        if not self.has_shape:
            return []
        return bake_smoothed_polygon(self.path, self.smoothing, self.offset)

    def with_path(self, path):
        return self.model_copy(update={"path": [[float(x), float(y)] for x, y in path]})

    def with_smoothing(self, smoothing):
        return self.model_copy(update={"smoothing": min(1.0, max(0.0, float(smoothing)))})

    def with_offset(self, dx, dy):
        return self.model_copy(update={"offset": [float(dx), float(dy)]})


# ID generation and point helpers

def generate_mask_id(path, round_digits=4):
    """
    Generate deterministic mask ID from polygon coordinates.

    Rounds coordinates to avoid floating point instability.
    """
    if not path:
        return "mask_empty"

    rounded = [[round(p[0], round_digits), round(p[1], round_digits)] for p in path]
    h = hashlib.sha256(str(rounded).encode()).hexdigest()[:12]
    return f"mask_{h}"


def compute_bbox(points):
    """
    Compute bounding box from a list of [x, y] points.

    Returns [min_x, min_y, max_x, max_y].
    """
    if len(points) == 0:
        return [0.0, 0.0, 0.0, 0.0]

    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return [min(xs), min(ys), max(xs), max(ys)]


def compute_centroid(points):
    """
    Compute the vertex centroid of a list of [x, y] points.
    """
    if len(points) == 0:
        return [0.0, 0.0]

    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return [sum(xs) / len(xs), sum(ys) / len(ys)]
