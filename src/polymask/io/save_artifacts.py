"""
Artifact saving utilities for polymask.

Handles writing masks, overlay images, JSON results and SVG files, plus the
per-run debug artifact directory.
"""

import json
import os

import cv2
import numpy as np

from polymask.tracer import get_tracer


def ensure_dir(path):
    """Create directory if it does not exist."""
    if path:
        os.makedirs(path, exist_ok=True)


def save_image(img, path, max_edge=None):
    """
    Save an image to disk.

    Optionally downscales to max_edge while preserving aspect ratio.
    RGB and RGBA inputs are converted to OpenCV channel order; single
    channel masks are written as-is.
    """
    tracer = get_tracer()

    if max_edge and max(img.shape[:2]) > max_edge:
        scale = max_edge / max(img.shape[:2])
        new_size = (int(img.shape[1] * scale), int(img.shape[0] * scale))
        img = cv2.resize(img, new_size, interpolation=cv2.INTER_AREA)

    if img.ndim == 3 and img.shape[2] == 3:
        out = cv2.cvtColor(img, cv2.COLOR_RGB2BGR)
    elif img.ndim == 3 and img.shape[2] == 4:
        out = cv2.cvtColor(img, cv2.COLOR_RGBA2BGRA)
    else:
        out = img

    ensure_dir(os.path.dirname(path))
    if not cv2.imwrite(path, out):
        raise ValueError(f"Failed to write image: {path}")
    tracer.event(f"Saved image: {path}")


def save_json(data, path, indent=2):
    """
    Save a dictionary, list or Pydantic model(s) to JSON.
    """
    tracer = get_tracer()

    ensure_dir(os.path.dirname(path))

    if hasattr(data, "model_dump"):
        data = data.model_dump()
    elif isinstance(data, list):
        data = [d.model_dump() if hasattr(d, "model_dump") else d for d in data]

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, default=str)

    tracer.event(f"Saved JSON: {path}")


def save_svg(svg_content, path):
    """
    Save SVG content (an svgwrite Drawing or a string) to file.
    """
    tracer = get_tracer()

    ensure_dir(os.path.dirname(path))

    if hasattr(svg_content, "tostring"):
        content = svg_content.tostring()
    else:
        content = str(svg_content)

    with open(path, "w", encoding="utf-8") as f:
        f.write(content)

    tracer.event(f"Saved SVG: {path}")


def hex_to_rgb(color):
    """Convert '#rrggbb' to an (r, g, b) tuple."""
    color = color.lstrip("#")
    return tuple(int(color[i:i + 2], 16) for i in (0, 2, 4))


def draw_overlay(base_img, polygons=None, points=None, bboxes=None, texts=None,
                 polygon_colors=None, polygon_color=(0, 255, 0), point_color=(255, 0, 0),
                 bbox_color=(0, 0, 255), text_color=(0, 0, 0)):
    """
    Draw debug overlay on an RGB image.

    All inputs are optional and in pixel coordinates. Creates a copy of the
    base image.

    polygons: list of closed [[x,y], ...] polygons
    polygon_colors: optional per-polygon RGB colours
    points: list of ([x,y], radius) tuples
    bboxes: list of [min_x, min_y, max_x, max_y] bounding boxes
    texts: list of ([x,y], text_string) tuples
    """
    if base_img.ndim == 2:
        overlay = cv2.cvtColor(base_img, cv2.COLOR_GRAY2RGB)
    elif base_img.shape[2] == 4:
        overlay = cv2.cvtColor(base_img, cv2.COLOR_RGBA2RGB)
    else:
        overlay = base_img.copy()

    # Drawing directly in RGB; colours are given as RGB as well
    if polygons:
        for idx, polygon in enumerate(polygons):
            if len(polygon) < 2:
                continue
            color = polygon_colors[idx] if polygon_colors else polygon_color
            pts = np.round(np.asarray(polygon)).astype(np.int32)
            cv2.polylines(overlay, [pts], isClosed=True, color=color, thickness=1)

    if points:
        for pt, radius in points:
            center = (int(pt[0]), int(pt[1]))
            cv2.circle(overlay, center, radius, point_color, -1)

    if bboxes:
        for bbox in bboxes:
            pt1 = (int(bbox[0]), int(bbox[1]))
            pt2 = (int(bbox[2]), int(bbox[3]))
            cv2.rectangle(overlay, pt1, pt2, bbox_color, 1)

    if texts:
        font = cv2.FONT_HERSHEY_SIMPLEX
        for (x, y), text in texts:
            cv2.putText(overlay, str(text), (int(x), int(y)), font, 0.4, text_color, 1)

    return overlay


def create_mask_overlay(rgb_img, mask, color=(255, 0, 0), alpha=0.5):
    """
    Tint an RGB image with a uint8 alpha mask.
    """
    base = rgb_img[..., :3].astype(np.float32)
    weight = (mask.astype(np.float32) / 255.0)[..., np.newaxis] * alpha
    tint = np.array(color, dtype=np.float32)
    return (base * (1 - weight) + tint * weight).astype(np.uint8)


class DebugArtifactWriter:
    """
    Helper class to manage debug artifact writing for a single run.

    Handles creation of debug directories and provides convenience methods
    for saving various artifact types.
    """

    def __init__(self, out_dir, run_name, enabled=True, max_edge=1600):
        self.out_dir = out_dir
        self.run_name = run_name
        self.enabled = enabled
        self.max_edge = max_edge

    def get_stage_dir(self, stage_name):
        """Get (and create) the debug directory for a stage."""
        debug_dir = os.path.join(self.out_dir, "debug", self.run_name, stage_name)
        ensure_dir(debug_dir)
        return debug_dir

    def save_image(self, img, stage_name, filename):
        if not self.enabled:
            return
        save_image(img, os.path.join(self.get_stage_dir(stage_name), filename), max_edge=self.max_edge)

    def save_json(self, data, stage_name, filename):
        if not self.enabled:
            return
        save_json(data, os.path.join(self.get_stage_dir(stage_name), filename))

    def save_svg(self, svg_content, stage_name, filename):
        if not self.enabled:
            return
        save_svg(svg_content, os.path.join(self.get_stage_dir(stage_name), filename))

    def save_overlay(self, base_img, stage_name, filename, **kwargs):
        """Draw and save an overlay image."""
        if not self.enabled:
            return
        self.save_image(draw_overlay(base_img, **kwargs), stage_name, filename)
