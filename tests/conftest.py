import sys
from pathlib import Path

import numpy as np
import pytest

# Add repository root to sys.path so 'desk_labels' can be imported in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from desk_labels.detection.data_types import RawDetection  # noqa: E402
from desk_labels.geometry.resolver import WorldPose  # noqa: E402


class MappedResolver:
    """Maps the normalized box center straight onto a world plane at depth z."""

    def __init__(self, z=1.0, miss_labels=(), rotation=(0.0, 0.0, 0.0, 1.0)):
        self.z = z
        self.miss_labels = set(miss_labels)
        self.rotation = rotation
        self.calls = 0

    def resolve(self, detection):
        self.calls += 1
        if detection.label in self.miss_labels:
            return None
        cx, cy = detection.center
        return WorldPose(
            position=(cx, cy, self.z),
            rotation=self.rotation,
            scale=(detection.size[0], detection.size[1], 1.0),
        )


def make_detection(
    label="cup",
    class_id=41,
    center=(0.5, 0.5),
    size=(0.1, 0.1),
    confidence=0.8,
):
    return RawDetection(
        center=center,
        size=size,
        class_id=class_id,
        confidence=confidence,
        label=label,
    )


def make_predictions(num_slots, num_classes=80):
    """Slot-major (N, 4 + num_classes) float32 prediction block."""
    return np.zeros((num_slots, 4 + num_classes), dtype=np.float32)


def put_slot(preds, slot, box, class_id, score):
    preds[slot, :4] = box
    preds[slot, 4 + class_id] = score
    return preds


def to_layout(preds, layout):
    if layout == "1CN":
        return preds.T[np.newaxis].copy()
    if layout == "1NC":
        return preds[np.newaxis].copy()
    if layout == "CN":
        return preds.T.copy()
    if layout == "NC":
        return preds.copy()
    raise ValueError(layout)


@pytest.fixture
def resolver():
    return MappedResolver()
