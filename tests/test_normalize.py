import numpy as np
import pytest

from photocut.config import MODNET, U2NET
from photocut.normalize import normalize_raw_matte, sigmoid, smoothstep


@pytest.mark.parametrize("family", [MODNET, U2NET], ids=lambda f: f.name)
def test_smoothstep_endpoints_and_monotonic(family):
    lo, hi = family.contrast_lo, family.contrast_hi
    assert smoothstep(lo, hi, lo) == 0.0
    assert smoothstep(lo, hi, hi) == 1.0

    xs = np.linspace(lo, hi, 257)
    ys = smoothstep(lo, hi, xs)
    assert (np.diff(ys) >= 0).all()
    assert smoothstep(lo, hi, lo - 0.1) == 0.0
    assert smoothstep(lo, hi, hi + 0.1) == 1.0


def test_sigmoid_handles_large_logits():
    v = sigmoid(np.array([-1000.0, 0.0, 1000.0]))
    assert np.isfinite(v).all()
    assert v[0] == pytest.approx(0.0)
    assert v[1] == pytest.approx(0.5)
    assert v[2] == pytest.approx(1.0)


def test_probability_matte_skips_sigmoid_and_snaps_extremes():
    raw = np.array([[0.0, 0.1, 0.95, 1.0]], dtype=np.float32)
    out = normalize_raw_matte(raw, MODNET)
    assert out.dtype == np.uint8
    assert out.tolist() == [[0, 0, 255, 255]]


def test_logit_matte_is_squashed_first():
    raw = np.full((8, 8), -8.0, dtype=np.float32)
    raw[2:6, 2:6] = 8.0
    out = normalize_raw_matte(raw, U2NET)
    assert (out[2:6, 2:6] == 255).all()
    assert out[0, 0] == 0


def test_collapsed_range_does_not_divide_by_zero():
    out = normalize_raw_matte(np.full((4, 4), 0.5, dtype=np.float32), MODNET)
    assert (out == 0).all()


def test_families_keep_distinct_contrast_curves():
    raw = np.array([[0.0, 0.5, 1.0]], dtype=np.float32)
    modnet = normalize_raw_matte(raw, MODNET)
    u2net = normalize_raw_matte(raw, U2NET)
    assert modnet[0, 1] == 100
    assert u2net[0, 1] == 106


def test_is_deterministic():
    rng = np.random.default_rng(7)
    raw = rng.normal(size=(32, 32)).astype(np.float32) * 4
    np.testing.assert_array_equal(normalize_raw_matte(raw, U2NET), normalize_raw_matte(raw.copy(), U2NET))


def test_rejects_non_2d():
    with pytest.raises(ValueError):
        normalize_raw_matte(np.zeros((1, 4, 4), dtype=np.float32), MODNET)
