"""
Pipeline orchestration for polymask.

Wires file inputs through the engine for the three call sites (colour
selection, detection decoding, mask rasterization) and writes their results
plus optional debug artifacts.
"""

import os

import numpy as np

from polymask.config import load_config
from polymask.detection.detector import ArrayDetector, detect_masks
from polymask.export.svg_overlay import emit_polygons_svg
from polymask.io.load_image import load_array, load_image, load_mask_settings, validate_image_input
from polymask.io.save_artifacts import (
    DebugArtifactWriter, create_mask_overlay, ensure_dir, hex_to_rgb, save_image, save_json, save_svg,
)
from polymask.models import MaskSettings, generate_mask_id
from polymask.raster.mask_raster import rasterize_settings
from polymask.selection.color_flood import select_by_color
from polymask.tracer import get_tracer, trace


def _prepare(out_dir, config, config_path, debug):
    if config is None:
        config = load_config(config_path)
    if debug:
        config.debug.enabled = True
    ensure_dir(out_dir)
    return config


def _check_image(image_path):
    tracer = get_tracer()
    errors = validate_image_input(image_path)
    if errors:
        for error in errors:
            tracer.event(error, level="ERROR")
        raise ValueError(f"Input validation failed: {errors}")


def _to_pixels(path, width, height):
    return [[x * width, y * height] for x, y in path]


@trace(label="run_color_selection")
def run_color_selection(image_path, seed, out_dir, tolerance=None, max_points=None,
                        config=None, config_path=None, debug=False):
    """
    Select a colour region of an image file and save the resulting mask.

    Writes selection.json (polygon + pixel count) and mask.png into out_dir.

    Returns:
        ColorSelectionResult, or None when nothing was selected
    """
    tracer = get_tracer()
    config = _prepare(out_dir, config, config_path, debug)
    _check_image(image_path)

    image = load_image(image_path)
    height, width = image.shape[:2]

    result = select_by_color(
        image, seed[0], seed[1],
        tolerance=tolerance,
        max_points=max_points,
        config=config.color_selection,
        boundary_config=config.boundary,
    )

    if result is None:
        tracer.event("No region selected", level="WARN")
        return None

    settings = MaskSettings(path=result.path)
    mask = rasterize_settings(settings, width, height, antialias=config.raster.antialias)

    payload = result.model_dump()
    payload["mask_id"] = generate_mask_id(result.path)
    payload["seed"] = list(seed)
    save_json(payload, os.path.join(out_dir, "selection.json"))
    save_image(mask, os.path.join(out_dir, "mask.png"))

    debug_writer = DebugArtifactWriter(
        out_dir, "selection", enabled=config.debug.enabled, max_edge=config.debug.max_edge_scale,
    )
    debug_writer.save_overlay(
        create_mask_overlay(image, mask),
        "color_flood",
        "01_selection_overlay.png",
        polygons=[_to_pixels(result.path, width, height)],
        points=[([seed[0] * width, seed[1] * height], 3)],
    )

    return result


@trace(label="run_detection")
def run_detection(image_path, predictions_path, out_dir, prototypes_path=None,
                  config=None, config_path=None, debug=False):
    """
    Decode saved model outputs for an image into mask polygons.

    The inference itself happens outside the engine; its raw outputs are
    replayed from .npy files. Writes detections.json and detections.svg.

    Returns:
        list of DetectedMask
    """
    config = _prepare(out_dir, config, config_path, debug)
    _check_image(image_path)

    image = load_image(image_path)
    height, width = image.shape[:2]

    predictions = load_array(predictions_path)
    prototypes = load_array(prototypes_path) if prototypes_path else None

    detections = detect_masks(image, ArrayDetector(predictions, prototypes), config)

    save_json(detections, os.path.join(out_dir, "detections.json"))
    dwg = emit_polygons_svg(
        [d.path for d in detections],
        width,
        height,
        colors=[d.color for d in detections],
        ids=[d.mask_id for d in detections],
    )
    save_svg(dwg, os.path.join(out_dir, "detections.svg"))

    debug_writer = DebugArtifactWriter(
        out_dir, "detection", enabled=config.debug.enabled, max_edge=config.debug.max_edge_scale,
    )
    if debug_writer.enabled:
        debug_writer.save_overlay(
            image,
            "postprocess",
            "01_detections_overlay.png",
            polygons=[_to_pixels(d.path, width, height) for d in detections],
            polygon_colors=[hex_to_rgb(d.color) for d in detections],
            bboxes=[
                [d.bbox.x * width, d.bbox.y * height, (d.bbox.x + d.bbox.w) * width, (d.bbox.y + d.bbox.h) * height]
                for d in detections
            ],
            texts=[((d.bbox.x * width, d.bbox.y * height - 4), f"{d.confidence:.2f}") for d in detections],
        )
        debug_writer.save_json(
            {
                "num_detections": len(detections),
                "confidences": [round(d.confidence, 4) for d in detections],
                "vertex_counts": [len(d.path) for d in detections],
                "predictions_shape": list(np.shape(predictions)),
            },
            "postprocess",
            "postprocess_metrics.json",
        )

    return detections


@trace(label="run_rasterize")
def run_rasterize(mask_path, width, height, out_path, config=None, config_path=None):
    """
    Rasterize a MaskSettings JSON file into an alpha PNG.

    Returns:
        (height, width) uint8 mask
    """
    if config is None:
        config = load_config(config_path)

    settings = load_mask_settings(mask_path)
    mask = rasterize_settings(settings, width, height, antialias=config.raster.antialias)
    save_image(mask, out_path)
    return mask
