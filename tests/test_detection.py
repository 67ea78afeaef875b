"""Tests for detection output decoding and the detector seam."""

import numpy as np
import pytest

from polymask.config import BoundaryConfig, DetectionConfig, EngineConfig
from polymask.detection.detector import (
    ArrayDetector, Detector, StubDetector, compute_letterbox, detect_masks, letterbox_image,
    split_model_outputs,
)
from polymask.detection.postprocess import (
    apply_nms,
    build_bbox_polygon,
    compute_iou,
    decode_instance_mask,
    decode_predictions,
    normalize_predictions,
    normalize_prototypes,
    postprocess_detections,
)
from polymask.models import PALETTE, BoundingBox, Detection, LetterboxParams


def _detection(x, y, w, h, confidence):
    return Detection(bbox=BoundingBox(x=x, y=y, w=w, h=h), confidence=confidence)


def _square_letterbox(size=640):
    return LetterboxParams(scale=1.0, original_width=size, original_height=size, target_size=size)


def _disk_prototypes(num_channels=4, size=160, center=80, radius=20):
    """Prototype bank (1, H, W, C) whose first channel is a strong disk."""
    yy, xx = np.mgrid[0:size, 0:size]
    disk = np.where((xx - center) ** 2 + (yy - center) ** 2 <= radius ** 2, 10.0, -10.0)
    bank = np.zeros((size, size, num_channels), dtype=np.float32)
    bank[..., 0] = disk
    return bank[np.newaxis, ...]


class TestIoU:
    """Tests for intersection over union."""

    def test_self_iou(self):
        box = BoundingBox(x=10, y=20, w=30, h=40)

        assert compute_iou(box, box) == pytest.approx(1.0)

    def test_disjoint(self):
        assert compute_iou((0, 0, 10, 10), (20, 20, 10, 10)) == 0.0

    def test_touching_edges(self):
        assert compute_iou((0, 0, 10, 10), (10, 0, 10, 10)) == 0.0

    def test_half_overlap(self):
        """Test two boxes overlapping by half their width."""
        assert compute_iou((0, 0, 10, 10), (5, 0, 10, 10)) == pytest.approx(50 / 150)

    def test_zero_area(self):
        assert compute_iou((0, 0, 0, 0), (0, 0, 0, 0)) == 0.0


class TestNms:
    """Tests for greedy non-maximum suppression."""

    def test_suppresses_overlap(self):
        detections = [
            _detection(0, 0, 10, 10, 0.6),
            _detection(1, 1, 10, 10, 0.9),
            _detection(50, 50, 10, 10, 0.7),
        ]

        kept = apply_nms(detections, 0.45)

        assert [d.confidence for d in kept] == [0.9, 0.7]

    def test_kept_boxes_below_threshold(self):
        """Test that no two surviving boxes overlap above the threshold."""
        rng = np.random.default_rng(3)
        detections = [
            _detection(*rng.uniform(0, 80, 2), *rng.uniform(5, 30, 2), float(rng.uniform(0.3, 1)))
            for _ in range(40)
        ]

        for threshold in (0.1, 0.3, 0.5, 0.7):
            kept = apply_nms(detections, threshold)
            confidences = [d.confidence for d in kept]
            assert confidences == sorted(confidences, reverse=True)
            for i in range(len(kept)):
                for j in range(i + 1, len(kept)):
                    assert compute_iou(kept[i].bbox, kept[j].bbox) <= threshold

    def test_higher_threshold_can_keep_fewer(self):
        """Test that raising the threshold can lower the survivor count.

        At 0.15 the top box suppresses B, which is then no longer there to
        suppress C and D. At 0.3 B survives and removes both.
        """
        detections = [
            _detection(0, 8, 10, 2, 0.9),
            _detection(0, 0, 10, 10, 0.8),
            _detection(0, 0, 5.5, 8, 0.7),
            _detection(4.5, 0, 5.5, 8, 0.6),
        ]

        loose = apply_nms(detections, 0.15)
        strict = apply_nms(detections, 0.3)

        assert [d.confidence for d in loose] == [0.9, 0.7, 0.6]
        assert [d.confidence for d in strict] == [0.9, 0.8]

    def test_empty(self):
        assert apply_nms([], 0.5) == []


class TestNormalizePredictions:
    """Tests for prediction layout handling."""

    def test_two_dimensional(self):
        rows = np.zeros((4, 6))

        assert normalize_predictions(rows).shape == (4, 6)

    def test_batched_rows(self):
        assert normalize_predictions(np.zeros((1, 100, 37))).shape == (100, 37)

    def test_transposed_export(self):
        """Test that (1, F, N) outputs are flipped to (N, F)."""
        raw = np.zeros((1, 5, 8))
        raw[0, 4, 3] = 0.9

        rows = normalize_predictions(raw)

        assert rows.shape == (8, 5)
        assert rows[3, 4] == pytest.approx(0.9)

    @pytest.mark.parametrize("shape", [(2, 3, 4, 5), (2, 10, 6), (7,), (10, 3)])
    def test_bad_shapes_give_no_rows(self, shape):
        assert normalize_predictions(np.zeros(shape)).shape == (0, 5)


class TestDecodePredictions:
    """Tests for row decoding and letterbox mapping."""

    def test_maps_back_to_source(self):
        """Test a box in a 200x100 image letterboxed into 640x640."""
        letterbox = compute_letterbox(200, 100)
        rows = np.array([[320, 320, 320, 160, 0.8]], dtype=np.float32)

        detections = decode_predictions(rows, 0.25, letterbox)

        assert len(detections) == 1
        np.testing.assert_allclose(detections[0].bbox.as_tuple(), (50, 25, 100, 50), atol=1e-4)

    def test_confidence_threshold(self):
        letterbox = _square_letterbox()
        rows = np.array([
            [100, 100, 50, 50, 0.2],
            [300, 300, 50, 50, 0.25],
            [500, 500, 50, 50, 0.9],
        ], dtype=np.float32)

        detections = decode_predictions(rows, 0.25, letterbox)

        assert len(detections) == 2

    def test_clamps_to_image(self):
        letterbox = _square_letterbox()
        rows = np.array([[0, 0, 100, 100, 0.9]], dtype=np.float32)

        bbox = decode_predictions(rows, 0.25, letterbox)[0].bbox

        assert bbox.as_tuple() == (0.0, 0.0, 50.0, 50.0)

    def test_coefficients_carried(self):
        rows = np.array([[320, 320, 64, 64, 0.9, 0.5, -0.5]], dtype=np.float32)

        det = decode_predictions(rows, 0.25, _square_letterbox())[0]

        assert det.coefficients == [0.5, -0.5]


class TestLetterbox:
    """Tests for letterbox parameters and padding."""

    def test_wide_image(self):
        params = compute_letterbox(200, 100)

        assert params.scale == pytest.approx(3.2)
        assert params.offset_x == 0
        assert params.offset_y == 160

    def test_round_trip(self):
        params = compute_letterbox(333, 517)
        x, y = params.to_source(*params.to_model(12.5, 400.0))

        assert (x, y) == pytest.approx((12.5, 400.0))

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            compute_letterbox(0, 100)

    def test_letterbox_image_pads_black(self):
        img = np.full((100, 200, 3), 255, dtype=np.uint8)

        tensor, params = letterbox_image(img)

        assert tensor.shape == (1, 640, 640, 3)
        assert tensor.dtype == np.float32
        assert tensor[0, :160].max() == 0.0
        np.testing.assert_allclose(tensor[0, 320, 320], [1.0, 1.0, 1.0])
        assert params.offset_y == 160


class TestInstanceMask:
    """Tests for prototype decoding."""

    def test_channels_last_bank(self):
        bank = normalize_prototypes(np.zeros((1, 160, 160, 32)))

        assert bank.shape == (32, 160, 160)

    def test_channels_first_bank(self):
        assert normalize_prototypes(np.zeros((1, 32, 160, 160))).shape == (32, 160, 160)

    def test_bad_bank(self):
        with pytest.raises(ValueError):
            normalize_prototypes(np.zeros((160, 160)))

    def test_sigmoid_of_weighted_sum(self):
        mask = decode_instance_mask([1.0, 0.0, 0.0, 0.0], _disk_prototypes())

        assert mask.shape == (160, 160)
        assert mask[80, 80] > 0.99
        assert mask[0, 0] < 0.01

    def test_extra_coefficients_ignored(self):
        """Test that only min(len(coeffs), channels) channels take part."""
        mask = decode_instance_mask([1.0] + [5.0] * 10, _disk_prototypes(num_channels=2))

        assert mask[80, 80] > 0.99
        assert mask[0, 0] < 0.01


class TestPostprocessDetections:
    """Tests for the full decode path."""

    def test_bbox_fallback_without_prototypes(self):
        """Test that detections without masks get the resampled box polygon."""
        letterbox = compute_letterbox(200, 100)
        predictions = np.array([[320, 320, 320, 160, 0.8]], dtype=np.float32)
        config = DetectionConfig(expansion_percent=0.0)

        results = postprocess_detections(predictions, None, letterbox, config=config)

        assert len(results) == 1
        expected = build_bbox_polygon(BoundingBox(x=50, y=25, w=100, h=50), 200, 100, 25)
        np.testing.assert_allclose(results[0].path, expected, atol=1e-5)
        np.testing.assert_allclose(results[0].bbox.as_tuple(), (0.25, 0.25, 0.5, 0.5), atol=1e-6)

    def test_mask_polygon_inside_box(self):
        """Test that a disk-shaped instance mask becomes a round polygon in its box."""
        coeffs = [1.0, 0.0, 0.0, 0.0]
        predictions = np.array([[320, 320, 200, 200, 0.9] + coeffs], dtype=np.float32)
        config = DetectionConfig(expansion_percent=0.0)

        results = postprocess_detections(predictions, _disk_prototypes(), _square_letterbox(), config=config)

        path = np.array(results[0].path)
        assert 3 <= len(path) <= 25
        assert path.min() >= 220 / 640 - 1e-6
        assert path.max() <= 420 / 640 + 1e-6

        radii = np.hypot(path[:, 0] - 0.5, path[:, 1] - 0.5)
        assert 0.09 < radii.mean() < 0.14

    def test_trace_ordering(self):
        """Test decoding with the simplified outline walk."""
        predictions = np.array([[320, 320, 200, 200, 0.9, 1.0, 0.0, 0.0, 0.0]], dtype=np.float32)

        results = postprocess_detections(
            predictions,
            _disk_prototypes(),
            _square_letterbox(),
            config=DetectionConfig(expansion_percent=0.0),
            boundary_config=BoundaryConfig(ordering="trace"),
        )

        path = np.array(results[0].path)
        radii = np.hypot(path[:, 0] - 0.5, path[:, 1] - 0.5)
        assert len(path) >= 3
        assert 0.08 < radii.mean() < 0.14

    def test_expansion_grows_polygon(self):
        letterbox = compute_letterbox(200, 100)
        predictions = np.array([[320, 320, 320, 160, 0.8]], dtype=np.float32)

        plain = postprocess_detections(predictions, None, letterbox, config=DetectionConfig(expansion_percent=0.0))
        grown = postprocess_detections(predictions, None, letterbox, config=DetectionConfig(expansion_percent=10.0))

        plain_span = np.ptp(np.array(plain[0].path)[:, 0])
        grown_span = np.ptp(np.array(grown[0].path)[:, 0])
        assert grown_span == pytest.approx(plain_span * 1.1)

    def test_bad_prototypes_fall_back(self):
        """Test that an unusable prototype bank degrades to box polygons."""
        letterbox = _square_letterbox()
        predictions = np.array([[320, 320, 200, 200, 0.9, 1.0, 0.0]], dtype=np.float32)
        config = DetectionConfig(expansion_percent=0.0)

        results = postprocess_detections(predictions, np.zeros((160, 160)), letterbox, config=config)

        expected = build_bbox_polygon(BoundingBox(x=220, y=220, w=200, h=200), 640, 640, 25)
        np.testing.assert_allclose(results[0].path, expected, atol=1e-5)

    def test_ids_and_colors(self):
        letterbox = _square_letterbox()
        predictions = np.array([
            [100, 100, 50, 50, 0.5],
            [400, 400, 50, 50, 0.9],
        ], dtype=np.float32)

        results = postprocess_detections(predictions, None, letterbox)

        assert [r.mask_id for r in results] == ["detection-0", "detection-1"]
        assert [r.color for r in results] == PALETTE[:2]
        assert results[0].confidence == pytest.approx(0.9)


class _UnavailableDetector(Detector):
    def predict(self, tensor):
        raise AssertionError("should not be called")

    def is_available(self):
        return False


class TestDetectMasks:
    """Tests for running a detector end to end."""

    def test_stub_detector_finds_nothing(self, disk_image):
        assert detect_masks(disk_image, StubDetector()) == []

    def test_unavailable_detector(self, disk_image):
        with pytest.raises(RuntimeError):
            detect_masks(disk_image, _UnavailableDetector())

    def test_array_detector(self):
        image = np.zeros((100, 200, 3), dtype=np.uint8)
        predictions = np.array([[320, 320, 320, 160, 0.8]], dtype=np.float32)

        results = detect_masks(image, ArrayDetector(predictions), EngineConfig())

        assert len(results) == 1
        assert results[0].color == PALETTE[0]

    def test_split_outputs(self):
        assert split_model_outputs([]) == (None, None)
        assert split_model_outputs(["p"]) == ("p", None)
        assert split_model_outputs(["p", "q"]) == ("p", "q")
