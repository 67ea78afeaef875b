"""
Detection output decoding for polymask.

Turns raw segmentation-model output rows into boxes, suppresses overlaps,
and decodes per-instance mask coefficients against the prototype bank into
editable normalized polygons. Every failure along the mask path degrades to
the detection's bounding-box polygon rather than raising.
"""

import math

import numpy as np

from polymask.config import BoundaryConfig, DetectionConfig
from polymask.geometry.boundary import extract_boundary
from polymask.geometry.resample import clamp_point_count, resample_polygon
from polymask.geometry.simplify import remove_sequential_duplicates
from polymask.geometry.smooth import expand_polygon, smooth_polygon
from polymask.models import PALETTE, BoundingBox, DetectedMask, Detection
from polymask.tracer import get_tracer, trace


# center_x, center_y, width, height, confidence
BOX_FIELDS = 5


def normalize_predictions(output):
    """
    Bring a raw prediction array into (num_rows, num_features) layout.

    Accepts (N, F), (1, N, F) and the transposed (1, F, N) export. Any other
    shape is logged and yields an empty array.
    """
    tracer = get_tracer()
    arr = np.asarray(output, dtype=np.float32)

    if arr.ndim == 2:
        rows = arr
    elif arr.ndim == 3 and arr.shape[0] == 1:
        # (1, rows, features) when rows outnumber features
        if arr.shape[1] > arr.shape[2]:
            rows = arr[0]
        else:
            rows = arr[0].T
    else:
        tracer.event(f"Unexpected predictions shape {arr.shape}, treating as no detections", level="WARN")
        return np.zeros((0, BOX_FIELDS), dtype=np.float32)

    if rows.shape[1] < BOX_FIELDS:
        tracer.event(f"Prediction rows have {rows.shape[1]} features, need at least {BOX_FIELDS}", level="WARN")
        return np.zeros((0, BOX_FIELDS), dtype=np.float32)

    return rows


def decode_predictions(rows, confidence_threshold, letterbox):
    """
    Decode prediction rows into detections in source-image pixels.

    Rows below the confidence threshold are dropped. Boxes are mapped out of
    the letterboxed model input, clamped to the image, and dropped when they
    end up with no area.
    """
    rows = np.asarray(rows)
    if rows.size == 0:
        return []

    width = letterbox.original_width
    height = letterbox.original_height

    detections = []
    for row in rows[rows[:, 4] >= confidence_threshold]:
        cx, cy, bw, bh, confidence = (float(v) for v in row[:BOX_FIELDS])

        x1, y1 = letterbox.to_source(cx - bw / 2, cy - bh / 2)
        x2, y2 = letterbox.to_source(cx + bw / 2, cy + bh / 2)

        box_x = max(0.0, min(x1, width))
        box_y = max(0.0, min(y1, height))
        box_w = min(x2, width) - box_x
        box_h = min(y2, height) - box_y

        if box_w > 0 and box_h > 0:
            detections.append(Detection(
                bbox=BoundingBox(x=box_x, y=box_y, w=box_w, h=box_h),
                confidence=confidence,
                coefficients=[float(c) for c in row[BOX_FIELDS:]],
            ))

    return detections


def compute_iou(box_a, box_b):
    """
    Intersection over union of two (x, y, w, h) boxes.

    Accepts BoundingBox instances or plain 4-tuples.
    """
    if isinstance(box_a, BoundingBox):
        box_a = box_a.as_tuple()
    if isinstance(box_b, BoundingBox):
        box_b = box_b.as_tuple()

    ax, ay, aw, ah = box_a
    bx, by, bw, bh = box_b

    iw = max(0.0, min(ax + aw, bx + bw) - max(ax, bx))
    ih = max(0.0, min(ay + ah, by + bh) - max(ay, by))
    intersection = iw * ih

    union = aw * ah + bw * bh - intersection
    return intersection / union if union > 0 else 0.0


def apply_nms(detections, iou_threshold):
    """
    Greedy non-maximum suppression.

    Detections are visited in descending confidence; each kept detection
    suppresses every later one whose IoU with it exceeds iou_threshold.
    """
    if not detections:
        return []

    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    suppressed = set()
    keep = []

    for i, det in enumerate(ordered):
        if i in suppressed:
            continue
        keep.append(det)

        for j in range(i + 1, len(ordered)):
            if j in suppressed:
                continue
            if compute_iou(det.bbox, ordered[j].bbox) > iou_threshold:
                suppressed.add(j)

    return keep


def normalize_prototypes(prototypes):
    """
    Bring a prototype bank into (channels, height, width) layout.

    A leading batch axis of 1 is dropped. Channels-last banks are detected
    by the channel axis being the smallest one.

    Raises:
        ValueError: if the bank is not three-dimensional after squeezing
    """
    bank = np.asarray(prototypes, dtype=np.float32)
    if bank.ndim == 4 and bank.shape[0] == 1:
        bank = bank[0]

    if bank.ndim != 3:
        raise ValueError(f"Unexpected prototypes shape: {bank.shape}")

    if bank.shape[2] < bank.shape[0] and bank.shape[2] < bank.shape[1]:
        bank = np.transpose(bank, (2, 0, 1))

    return bank


def decode_instance_mask(coefficients, prototypes):
    """
    Combine prototype maps into one instance probability mask.

    The mask is the sigmoid of the coefficient-weighted sum of the
    prototype channels. Only as many channels as there are coefficients
    (and vice versa) take part.
    """
    bank = normalize_prototypes(prototypes)
    coeffs = np.asarray(coefficients, dtype=np.float32)

    channels = min(len(coeffs), bank.shape[0])
    logits = np.einsum("c,chw->hw", coeffs[:channels], bank[:channels])
    return 1.0 / (1.0 + np.exp(-logits))


def build_bbox_polygon(bbox, width, height, target_count):
    """
    Resampled rectangle of a bounding box, normalized by the image size.
    """
    x, y, w, h = bbox.as_tuple() if isinstance(bbox, BoundingBox) else bbox
    corners = [[x, y], [x + w, y], [x + w, y + h], [x, y + h]]
    return [[px / width, py / height] for px, py in resample_polygon(corners, target_count)]


def polygon_from_mask(mask, bbox, letterbox, target_count, config=None, boundary_config=None):
    """
    Extract a normalized polygon for one detection from its instance mask.

    The mask is cropped to the detection box, its boundary is mapped back to
    source-image pixels, ordered, de-duplicated, smoothed and resampled to
    target_count points. Falls back to the bounding-box polygon whenever a
    step leaves fewer than 3 points.
    """
    tracer = get_tracer()
    config = config or DetectionConfig()
    boundary_config = boundary_config or BoundaryConfig()

    width = letterbox.original_width
    height = letterbox.original_height
    count = clamp_point_count(target_count, config.min_points, config.max_points)

    def fallback(reason):
        tracer.event(f"{reason}, using bounding box", level="DEBUG")
        return build_bbox_polygon(bbox, width, height, count)

    mask = np.asarray(mask)
    mask_h, mask_w = mask.shape

    # Source pixels -> model input -> prototype resolution
    model_x, model_y = letterbox.to_model(bbox.x, bbox.y)
    mask_scale = mask_w / letterbox.target_size
    crop_x = max(0, int(math.floor(model_x * mask_scale)))
    crop_y = max(0, int(math.floor(model_y * mask_scale)))
    crop_w = int(math.ceil(bbox.w * letterbox.scale * mask_scale))
    crop_h = int(math.ceil(bbox.h * letterbox.scale * mask_scale))

    cropped = mask[crop_y:min(crop_y + crop_h, mask_h), crop_x:min(crop_x + crop_w, mask_w)]
    cropped_h, cropped_w = cropped.shape
    if cropped_w < 2 or cropped_h < 2:
        return fallback(f"Cropped mask too small ({cropped_w}x{cropped_h})")

    def to_image(points):
        image_x = bbox.x + (points[:, 0] / cropped_w) * bbox.w
        image_y = bbox.y + (points[:, 1] / cropped_h) * bbox.h
        return np.column_stack([image_x, image_y])

    ordered = extract_boundary(
        cropped,
        threshold=boundary_config.threshold,
        ordering=boundary_config.ordering,
        transform=to_image,
        trace_epsilon=boundary_config.trace_epsilon,
    )
    if len(ordered) < 3:
        return fallback(f"Too few edge points ({len(ordered)})")

    deduped = remove_sequential_duplicates(ordered.tolist(), config.dedupe_distance)
    if len(deduped) < 3:
        return fallback("Deduplication removed too many points")

    initial_passes = 2 if len(deduped) > count else 1
    smoothed = smooth_polygon(deduped, initial_passes)
    resampled = resample_polygon(smoothed, count)
    final_points = remove_sequential_duplicates(smooth_polygon(resampled, 1), config.final_dedupe_distance)

    if len(final_points) < 3:
        return fallback("Resampling left too few points")

    return [[x / width, y / height] for x, y in final_points]


@trace(label="postprocess_detections")
def postprocess_detections(predictions, prototypes, letterbox, config=None, boundary_config=None):
    """
    Full decode of one inference pass.

    Args:
        predictions: raw prediction array (see normalize_predictions)
        prototypes: prototype bank or None
        letterbox: LetterboxParams used to prepare the model input
        config: DetectionConfig
        boundary_config: BoundaryConfig

    Returns:
        list of DetectedMask in descending confidence order
    """
    tracer = get_tracer()
    config = config or DetectionConfig()
    boundary_config = boundary_config or BoundaryConfig()

    width = letterbox.original_width
    height = letterbox.original_height

    with tracer.span("decode", module="postprocess"):
        rows = normalize_predictions(predictions)
        detections = decode_predictions(rows, config.confidence_threshold, letterbox)
        tracer.event(f"{len(detections)} of {len(rows)} rows above confidence {config.confidence_threshold}")

    with tracer.span("nms", module="postprocess"):
        detections = apply_nms(detections, config.nms_threshold)
        tracer.event(f"After NMS: {len(detections)} detections")

    count = clamp_point_count(config.target_point_count, config.min_points, config.max_points)
    expansion = max(0.0, min(100.0, float(config.expansion_percent)))

    results = []
    with tracer.span("masks", module="postprocess"):
        for i, det in enumerate(detections):
            path = None
            if prototypes is not None and det.has_coefficients:
                try:
                    mask = decode_instance_mask(det.coefficients, prototypes)
                except ValueError as e:
                    tracer.event(f"Mask decode failed for detection {i}: {e}", level="WARN")
                else:
                    path = polygon_from_mask(mask, det.bbox, letterbox, count, config, boundary_config)

            if path is None:
                path = build_bbox_polygon(det.bbox, width, height, count)

            if expansion > 0:
                path = expand_polygon(path, expansion)

            results.append(DetectedMask(
                mask_id=f"detection-{i}",
                path=path,
                confidence=det.confidence,
                bbox=det.bbox.normalized(width, height),
                color=PALETTE[i % len(PALETTE)],
            ))

    return results
