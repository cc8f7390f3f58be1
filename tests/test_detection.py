"""Tests for the SAM-2 and YOLO + SAM detection adapters."""

import pytest

from person_removal_service.detection import (
    SAM2_PARAMS,
    YOLO_PARAMS,
    BoxRefineDetector,
    SegmentationDetector,
)
from person_removal_service.errors import DetectionFailure, RemoteServiceError


class FakeClient:
    """Returns queued outputs per model reference; exceptions are raised."""

    def __init__(self, outputs):
        self.outputs = {ref: list(values) for ref, values in outputs.items()}
        self.calls = []

    def run(self, model_ref, inputs, cancel=None):
        self.calls.append((model_ref, inputs))
        value = self.outputs[model_ref].pop(0)
        if isinstance(value, Exception):
            raise value
        return value


def _probe(size):
    return lambda url: size


class TestSegmentationDetector:
    def test_converts_and_filters_detections(self):
        client = FakeClient(
            {
                "meta/sam-2:v": [
                    [
                        {"bbox": [10, 20, 30, 40], "mask": "https://cdn/m0.png", "confidence": 0.9},
                        {"bbox": [0, 0, 5, 5], "mask": "https://cdn/m1.png", "confidence": 0.5},
                        {"bbox": [50, 50, 10, 10], "mask": "https://cdn/m2.png", "confidence": 0.51},
                    ]
                ]
            }
        )
        detector = SegmentationDetector(client, "meta/sam-2:v", dimension_probe=_probe((640, 480)))
        result = detector.detect("https://img/in.jpg")

        assert [m.id for m in result.masks] == ["person_0", "person_2"]
        first = result.masks[0]
        assert first.center_point == (25.0, 40.0)
        assert first.area == 1200.0
        assert first.mask == "https://cdn/m0.png"
        assert (result.image_width, result.image_height) == (640, 480)
        assert result.model_used == "sam-2"

        model_ref, inputs = client.calls[0]
        assert inputs["image"] == "https://img/in.jpg"
        assert inputs["points_per_side"] == SAM2_PARAMS["points_per_side"] == 32
        assert inputs["min_mask_region_area"] == 100

    def test_defaults_for_missing_fields(self):
        client = FakeClient({"sam2": [[{"confidence": "oops"}, {}]]})
        detector = SegmentationDetector(client, "sam2", dimension_probe=_probe((100, 100)))
        result = detector.detect("https://img/in.jpg")
        assert len(result.masks) == 2
        assert result.masks[0].bbox == (0.0, 0.0, 100.0, 100.0)
        assert result.masks[0].confidence == 0.8
        assert result.masks[1].mask == ""

    @pytest.mark.parametrize(
        "bbox",
        [
            [float("nan")] * 4,
            [10, 10, float("inf"), 20],
            [float("-inf"), 0, 5, 5],
        ],
    )
    def test_non_finite_bbox_uses_default(self, bbox):
        client = FakeClient({"sam2": [[{"bbox": bbox, "mask": "m", "confidence": 0.9}]]})
        result = SegmentationDetector(client, "sam2", dimension_probe=_probe((100, 100))).detect("u")
        person = result.masks[0]
        assert person.bbox == (0.0, 0.0, 100.0, 100.0)
        assert person.center_point == (50.0, 50.0)
        assert person.area == 10000.0

    def test_empty_output_is_not_an_error(self):
        client = FakeClient({"sam2": [[]]})
        result = SegmentationDetector(client, "sam2", dimension_probe=_probe((100, 100))).detect("u")
        assert result.masks == []

    def test_remote_error_becomes_detection_failure(self):
        client = FakeClient({"sam2": [RemoteServiceError("503")]})
        with pytest.raises(DetectionFailure, match="503"):
            SegmentationDetector(client, "sam2", dimension_probe=_probe((1, 1))).detect("u")

    def test_non_list_output_fails(self):
        client = FakeClient({"sam2": [{"combined_mask": "x"}]})
        with pytest.raises(DetectionFailure):
            SegmentationDetector(client, "sam2", dimension_probe=_probe((1, 1))).detect("u")

    def test_dimension_probe_failure_uses_fallback(self):
        def broken(url):
            raise ValueError("Invalid image data")

        client = FakeClient({"sam2": [[]]})
        detector = SegmentationDetector(client, "sam2", dimension_probe=broken, fallback_size=(1024, 768))
        result = detector.detect("u")
        assert (result.image_width, result.image_height) == (1024, 768)


class TestBoxRefineDetector:
    def test_refines_each_box_and_skips_failures(self):
        client = FakeClient(
            {
                "yolo": [
                    [
                        {"bbox": [0, 0, 10, 10], "confidence": 0.9},
                        {"bbox": [20, 20, 10, 10], "confidence": 0.8},
                        {"bbox": [40, 40, 10, 10], "confidence": 0.7},
                    ]
                ],
                "sam": [
                    {"mask": "https://cdn/a.png"},
                    RemoteServiceError("refine failed"),
                    {"mask": "https://cdn/c.png"},
                ],
            }
        )
        detector = BoxRefineDetector(client, "yolo", "sam", dimension_probe=_probe((200, 100)))
        result = detector.detect("https://img/in.jpg")

        assert [m.id for m in result.masks] == ["person_0", "person_2"]
        assert [m.mask for m in result.masks] == ["https://cdn/a.png", "https://cdn/c.png"]
        assert result.model_used == "yolov8+sam"
        assert (result.image_width, result.image_height) == (200, 100)

        yolo_inputs = client.calls[0][1]
        assert yolo_inputs["classes"] == YOLO_PARAMS["classes"] == [0]
        refine_inputs = client.calls[1][1]
        assert refine_inputs["input_box"] == [0.0, 0.0, 10.0, 10.0]
        assert refine_inputs["multimask_output"] is False

    def test_missing_mask_is_dropped(self):
        client = FakeClient({"yolo": [[{"bbox": [0, 0, 10, 10]}]], "sam": [{}]})
        result = BoxRefineDetector(client, "yolo", "sam", dimension_probe=_probe((10, 10))).detect("u")
        assert result.masks == []

    def test_detector_error_becomes_detection_failure(self):
        client = FakeClient({"yolo": [RemoteServiceError("down")], "sam": []})
        with pytest.raises(DetectionFailure, match="YOLO"):
            BoxRefineDetector(client, "yolo", "sam", dimension_probe=_probe((10, 10))).detect("u")
