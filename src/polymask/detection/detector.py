"""
Detector interface for polymask.

The inference engine is an external collaborator, handed to detect_masks as
a Detector instance. Letterboxing of the model input lives here as well.
"""

from abc import ABC, abstractmethod
import math

import cv2
import numpy as np

from polymask.config import EngineConfig
from polymask.detection.postprocess import postprocess_detections
from polymask.models import LetterboxParams
from polymask.tracer import get_tracer, trace


class Detector(ABC):
    """Abstract interface for segmentation model runners."""

    @abstractmethod
    def predict(self, tensor):
        """
        Run the model on a letterboxed input.

        Args:
            tensor: (1, size, size, 3) float32 array in [0, 1], RGB

        Returns:
            list of output arrays: predictions first, then optionally the
            prototype bank
        """

    @abstractmethod
    def is_available(self):
        """Check if this detector is ready to use."""


class StubDetector(Detector):
    """
    Detector that never finds anything.

    Lets the full decode path run where no model is installed.
    """

    def predict(self, tensor):
        return []

    def is_available(self):
        return True


class ArrayDetector(Detector):
    """Detector that replays outputs captured from an earlier inference run."""

    def __init__(self, predictions, prototypes=None):
        self.predictions = predictions
        self.prototypes = prototypes

    def predict(self, tensor):
        if self.predictions is None:
            return []
        outputs = [self.predictions]
        if self.prototypes is not None:
            outputs.append(self.prototypes)
        return outputs

    def is_available(self):
        return True


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def compute_letterbox(width, height, target_size=640):
    """
    Letterbox parameters for fitting a width x height image into a square.

    The image is scaled to fit while keeping its aspect ratio and centred,
    with the padding split evenly on both sides.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")

    scale = min(target_size / width, target_size / height)
    scaled_w = _round_half_up(width * scale)
    scaled_h = _round_half_up(height * scale)

    return LetterboxParams(
        scale=scale,
        offset_x=_round_half_up((target_size - scaled_w) / 2),
        offset_y=_round_half_up((target_size - scaled_h) / 2),
        original_width=width,
        original_height=height,
        target_size=target_size,
    )


def letterbox_image(image, target_size=640):
    """
    Resize and pad an RGB image onto a black square model input.

    Returns:
        (tensor, LetterboxParams) where tensor is (1, size, size, 3) float32
        normalized to [0, 1]
    """
    img = np.asarray(image)
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_RGBA2RGB)

    height, width = img.shape[:2]
    params = compute_letterbox(width, height, target_size)

    scaled_w = _round_half_up(width * params.scale)
    scaled_h = _round_half_up(height * params.scale)
    resized = cv2.resize(img, (scaled_w, scaled_h), interpolation=cv2.INTER_LINEAR)

    canvas = np.zeros((target_size, target_size, 3), dtype=np.uint8)
    ox, oy = int(params.offset_x), int(params.offset_y)
    canvas[oy:oy + scaled_h, ox:ox + scaled_w] = resized

    tensor = (canvas.astype(np.float32) / 255.0)[np.newaxis, ...]
    return tensor, params


def split_model_outputs(outputs):
    """
    Separate raw model outputs into (predictions, prototypes).

    A single output carries predictions only; with several, the second one
    is the prototype bank.
    """
    if outputs is None or len(outputs) == 0:
        return None, None
    if len(outputs) == 1:
        return outputs[0], None
    return outputs[0], outputs[1]


@trace(label="detect_masks")
def detect_masks(image, detector, config=None):
    """
    Run a detector on an image and decode its output into mask polygons.

    Args:
        image: RGB(A) uint8 array
        detector: Detector instance
        config: EngineConfig

    Returns:
        list of DetectedMask

    Raises:
        RuntimeError: if the detector reports it is not available
    """
    tracer = get_tracer()
    config = config or EngineConfig()

    if not detector.is_available():
        raise RuntimeError(f"Detector {type(detector).__name__} is not available")

    with tracer.span("letterbox", module="detector"):
        tensor, params = letterbox_image(image, config.detection.target_size)
        tracer.event(f"Letterbox scale={params.scale:.4f} offset=({params.offset_x}, {params.offset_y})")

    with tracer.span("inference", module="detector"):
        outputs = detector.predict(tensor)

    predictions, prototypes = split_model_outputs(outputs)
    if predictions is None:
        tracer.event("Detector returned no outputs")
        return []

    return postprocess_detections(
        predictions,
        prototypes,
        params,
        config=config.detection,
        boundary_config=config.boundary,
    )
