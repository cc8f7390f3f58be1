"""Tests for foreground/background separation."""

import pytest

from conftest import person
from person_removal_service.masks import MaskCodec
from person_removal_service.separation import separate_foreground_background
from person_removal_service.types import DetectionResult, PersonMask


def _ids(masks):
    return [m.id for m in masks]


@pytest.fixture
def crowd():
    return DetectionResult(
        masks=[
            person("person_0", (0, 0, 10, 10)),
            person("person_1", (30, 30, 40, 40)),
            person("person_2", (85, 5, 10, 20)),
            person("person_3", (40, 60, 20, 30)),
        ],
        image_width=100,
        image_height=100,
    )


class TestSeparate:
    def test_empty_detection(self):
        result = separate_foreground_background(DetectionResult(masks=[], image_width=100, image_height=100))
        assert result.foreground_masks == []
        assert result.background_masks == []
        assert result.foreground_mask == ""
        assert result.background_mask == ""

    def test_scenario_b_keeps_centered_subject(self, two_people):
        result = separate_foreground_background(two_people, 1)
        assert _ids(result.foreground_masks) == ["person_0"]
        assert _ids(result.background_masks) == ["person_1"]
        assert result.background_mask == two_people.masks[1].mask
        assert result.scores[0].person_id == "person_0"

    def test_zero_target_moves_everyone_to_background(self, crowd):
        result = separate_foreground_background(crowd, 0)
        assert result.foreground_masks == []
        assert _ids(result.background_masks) == _ids(crowd.masks)
        assert result.foreground_mask == ""

    def test_negative_target_treated_as_zero(self, crowd):
        result = separate_foreground_background(crowd, -3)
        assert result.foreground_masks == []

    @pytest.mark.parametrize("target", [0, 1, 2, 3, 4, 10])
    def test_partition_is_complete_and_disjoint(self, crowd, target):
        result = separate_foreground_background(crowd, target)
        fg = set(_ids(result.foreground_masks))
        bg = set(_ids(result.background_masks))
        assert fg.isdisjoint(bg)
        assert fg | bg == set(_ids(crowd.masks))
        assert len(fg) == min(target, len(crowd.masks))

    def test_partitions_keep_detection_order(self, crowd):
        result = separate_foreground_background(crowd, 2)
        order = _ids(crowd.masks)
        assert _ids(result.background_masks) == sorted(_ids(result.background_masks), key=order.index)
        assert _ids(result.foreground_masks) == sorted(_ids(result.foreground_masks), key=order.index)

    def test_ties_keep_detection_order(self):
        twin_a = person("twin_a", (10, 40, 20, 20))
        twin_b = PersonMask.from_bbox("twin_b", twin_a.mask, twin_a.bbox, twin_a.confidence)
        detection = DetectionResult(masks=[twin_a, twin_b], image_width=100, image_height=100)
        result = separate_foreground_background(detection, 1)
        assert _ids(result.foreground_masks) == ["twin_a"]
        assert _ids(result.background_masks) == ["twin_b"]

    def test_merged_background_is_union(self, crowd):
        codec = MaskCodec()
        result = separate_foreground_background(crowd, 1, codec=codec)
        merged = codec.decode(result.background_mask)
        assert merged.sum() == sum(int(m.bbox[2] * m.bbox[3]) for m in result.background_masks)

    def test_partitions_without_merging_decode_nothing(self, crowd):
        def unreachable(ref):
            raise AssertionError(f"decoded {ref}")

        result = separate_foreground_background(crowd, 2, codec=MaskCodec(fetch=unreachable), merge_masks=False)
        assert len(result.foreground_masks) == 2
        assert len(result.background_masks) == 2
        assert result.foreground_mask == ""
        assert result.background_mask == ""
