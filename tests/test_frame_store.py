import numpy as np
import pytest

from dvo.errors import ContractViolation
from dvo.modules.gradient import GradientExtractor
from dvo.modules.pyramid import PyramidBuilder
from dvo.system.state import Frame, FrameStore


def _frame(idx, image):
    frame = PyramidBuilder(3).apply(Frame(idx=idx), image)
    GradientExtractor().apply(frame)
    return frame


def test_window_never_exceeds_capacity_plus_one(image):
    store = FrameStore(capacity=3)
    sizes = []
    for i in range(8):
        store.ingest(_frame(i, image))
        sizes.append(len(store))
        store.evict()
        assert len(store) <= 3
    assert max(sizes) == 4
    assert store.ids() == [5, 6, 7]


def test_evicts_oldest_and_releases_it(image):
    store = FrameStore(capacity=2)
    frames = [_frame(i, image) for i in range(3)]
    for f in frames:
        store.ingest(f)
    evicted = store.evict()

    assert evicted == [frames[0]]
    assert frames[0] not in store
    assert frames[0].released and not frames[0].has_pyramid
    with pytest.raises(ContractViolation):
        frames[0].pyramid
    assert store.oldest is frames[1] and store.latest is frames[2]


def test_evicted_keyframe_is_kept_intact(image):
    store = FrameStore(capacity=1)
    kf = _frame(0, image)
    kf.is_keyframe = True
    snapshot = kf.pyramid[0].copy()
    store.ingest(kf)
    store.ingest(_frame(1, image))
    store.evict()

    assert kf not in store
    assert not kf.released
    np.testing.assert_array_equal(kf.pyramid[0], snapshot)
    assert kf.has_gradients


def test_ids_must_increase(image):
    store = FrameStore(capacity=4)
    store.ingest(_frame(3, image))
    with pytest.raises(ContractViolation):
        store.ingest(_frame(3, image))


def test_ingest_requires_eviction(image):
    store = FrameStore(capacity=1)
    store.ingest(_frame(0, image))
    store.ingest(_frame(1, image))
    with pytest.raises(ContractViolation):
        store.ingest(_frame(2, image))


def test_capacity_must_be_positive():
    with pytest.raises(ContractViolation):
        FrameStore(capacity=0)


def test_write_once_fields(image):
    frame = _frame(0, image)
    with pytest.raises(ContractViolation):
        frame.set_gradients([])
    with pytest.raises(ContractViolation):
        frame.candidates
