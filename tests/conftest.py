"""Pytest fixtures for polymask tests."""

import os
import tempfile

import cv2
import numpy as np
import pytest


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def square_image():
    """100x100 white image with a uniform red 10x10 square in the middle."""
    img = np.full((100, 100, 3), 255, dtype=np.uint8)
    img[45:55, 45:55] = (200, 30, 30)
    return img


@pytest.fixture
def disk_image():
    """200x150 dark image with a bright filled circle."""
    img = np.full((150, 200, 3), 20, dtype=np.uint8)
    cv2.circle(img, (100, 75), 40, (240, 240, 240), -1)
    return img


@pytest.fixture
def disk_mask():
    """Boolean 64x64 mask containing a filled disk of radius 20."""
    mask = np.zeros((64, 64), dtype=np.uint8)
    cv2.circle(mask, (32, 32), 20, 1, -1)
    return mask.astype(bool)


@pytest.fixture
def unit_square():
    """Normalized polygon covering the whole canvas."""
    return [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]]


@pytest.fixture
def inset_square():
    """Normalized polygon covering the centre quarter of the canvas."""
    return [[0.25, 0.25], [0.75, 0.25], [0.75, 0.75], [0.25, 0.75]]


@pytest.fixture
def hexagon():
    """Regular hexagon in pixel units centred on (50, 50)."""
    angles = np.linspace(0, 2 * np.pi, 6, endpoint=False)
    return np.column_stack([50 + 30 * np.cos(angles), 50 + 30 * np.sin(angles)]).tolist()


@pytest.fixture
def default_config():
    """Create default engine configuration."""
    from polymask.config import EngineConfig
    return EngineConfig()


@pytest.fixture
def square_image_file(temp_dir, square_image):
    """Write the square image to disk for pipeline tests."""
    path = os.path.join(temp_dir, "square.png")
    cv2.imwrite(path, cv2.cvtColor(square_image, cv2.COLOR_RGB2BGR))
    return path
