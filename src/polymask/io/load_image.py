"""
Input loading utilities for polymask.

Images come in through OpenCV; raw inference outputs captured from the
external model runner come in as NumPy .npy files.
"""

import json
import os

import cv2
import numpy as np

from polymask.models import MaskSettings
from polymask.tracer import get_tracer, trace


SUPPORTED_IMAGE_EXTENSIONS = [".png", ".jpg", ".jpeg", ".tiff", ".tif", ".bmp", ".webp"]


@trace(label="load_image")
def load_image(path, keep_alpha=False):
    """
    Load an image from disk.

    Returns an RGB (H, W, 3) uint8 array, or RGBA (H, W, 4) when keep_alpha
    is set and the file carries an alpha channel.

    Raises FileNotFoundError if path does not exist.
    Raises ValueError if image cannot be loaded.
    """
    tracer = get_tracer()

    if not os.path.exists(path):
        raise FileNotFoundError(f"Image not found: {path}")

    flag = cv2.IMREAD_UNCHANGED if keep_alpha else cv2.IMREAD_COLOR
    img = cv2.imread(path, flag)

    if img is None:
        raise ValueError(f"Failed to load image: {path}")

    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

    height, width = img.shape[:2]
    tracer.event(f"Loaded image: {width}x{height}, channels={img.shape[2]}")

    return img


def load_array(path):
    """
    Load a raw model output array saved with numpy.save.

    Raises FileNotFoundError if path does not exist.
    """
    tracer = get_tracer()

    if not os.path.exists(path):
        raise FileNotFoundError(f"Array not found: {path}")

    arr = np.load(path, allow_pickle=False)
    tracer.event(f"Loaded array {os.path.basename(path)} shape={arr.shape}")
    return arr


def load_mask_settings(path):
    """
    Load a layer's MaskSettings from a JSON file.

    Raises FileNotFoundError if path does not exist; pydantic raises a
    ValidationError for malformed content.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Mask settings not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return MaskSettings.model_validate(data)


def validate_image_input(path):
    """
    Check that a path exists and looks like a readable image.

    Returns a list of error messages (empty if valid).
    """
    if not os.path.exists(path):
        return [f"File not found: {path}"]

    ext = os.path.splitext(path)[1].lower()
    if ext not in SUPPORTED_IMAGE_EXTENSIONS:
        return [f"Unsupported image format: {path}"]

    if cv2.imread(path, cv2.IMREAD_UNCHANGED) is None:
        return [f"Cannot read image: {path}"]

    return []
