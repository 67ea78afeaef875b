"""Tests for data models and mask settings."""

import pytest
from pydantic import ValidationError

from polymask.models import (
    BoundingBox, DetectedMask, Detection, MaskSettings, compute_bbox, compute_centroid, generate_mask_id,
)


class TestMaskSettings:
    """Tests for MaskSettings."""

    def test_defaults(self):
        settings = MaskSettings()

        assert settings.enabled and settings.visible
        assert settings.path == []
        assert settings.offset == [0.0, 0.0]
        assert not settings.has_shape

    def test_frozen(self, inset_square):
        settings = MaskSettings(path=inset_square)

        with pytest.raises(ValidationError):
            settings.smoothing = 0.5

    def test_smoothing_range_validated(self):
        with pytest.raises(ValidationError):
            MaskSettings(smoothing=1.5)

    def test_negative_feather_rejected(self):
        with pytest.raises(ValidationError):
            MaskSettings(feather=-1.0)

    def test_with_helpers_return_copies(self, inset_square):
        """Test that edits never touch the original control points."""
        original = MaskSettings(path=inset_square)

        smoothed = original.with_smoothing(1.7)
        moved = smoothed.with_offset(0.1, -0.1)

        assert original.smoothing == 0.0
        assert smoothed.smoothing == 1.0
        assert moved.offset == [0.1, -0.1]
        assert moved.path == original.path

    def test_rendered_path_pass_through(self, inset_square):
        settings = MaskSettings(path=inset_square)

        assert settings.rendered_path() == inset_square

    def test_rendered_path_does_not_compound(self, inset_square):
        """Test that re-applying the same smoothing gives the same result."""
        settings = MaskSettings(path=inset_square).with_smoothing(0.5)

        first = settings.rendered_path()
        again = settings.with_smoothing(0.5).rendered_path()

        assert first == again
        assert len(first) == 4 * 10

    def test_with_path(self):
        settings = MaskSettings().with_path([(0, 0), (1, 0), (1, 1)])

        assert settings.path == [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0]]
        assert settings.has_shape

    def test_json_round_trip(self, inset_square):
        settings = MaskSettings(path=inset_square, smoothing=0.3, feather=2.0)

        assert MaskSettings.model_validate_json(settings.model_dump_json()) == settings


class TestRecords:
    """Tests for detection records and helpers."""

    def test_bbox_normalized(self):
        box = BoundingBox(x=50, y=25, w=100, h=50).normalized(200, 100)

        assert box.as_tuple() == (0.25, 0.25, 0.5, 0.5)
        assert box.area == pytest.approx(0.25)

    def test_detected_mask_rejects_extra_fields(self):
        with pytest.raises(ValidationError):
            DetectedMask(
                mask_id="detection-0",
                confidence=0.5,
                bbox=BoundingBox(x=0, y=0, w=1, h=1),
                color="#3b82f6",
                label="cat",
            )

    def test_detection_row_has_no_polygon(self):
        """Test that decoded polygons are carried by DetectedMask, not the model row."""
        with pytest.raises(ValidationError):
            Detection(bbox=BoundingBox(x=0, y=0, w=1, h=1), confidence=0.5, polygon=[[0, 0]])

    def test_mask_id_deterministic(self, inset_square):
        assert generate_mask_id(inset_square) == generate_mask_id([list(p) for p in inset_square])
        assert generate_mask_id(inset_square).startswith("mask_")
        assert generate_mask_id([]) == "mask_empty"

    def test_mask_id_ignores_float_noise(self, inset_square):
        noisy = [[x + 1e-9, y - 1e-9] for x, y in inset_square]

        assert generate_mask_id(noisy) == generate_mask_id(inset_square)

    def test_bbox_and_centroid(self, inset_square):
        assert compute_bbox(inset_square) == [0.25, 0.25, 0.75, 0.75]
        assert compute_centroid(inset_square) == [0.5, 0.5]
        assert compute_bbox([]) == [0.0, 0.0, 0.0, 0.0]
