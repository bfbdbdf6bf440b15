import numpy as np
import pytest

from photocut.config import MODNET, U2NET
from photocut.errors import InferenceError
from photocut.inference import extract_primary_output, pick_matte_output, resolve_matte_reader


@pytest.mark.parametrize(
    "shape",
    [(1, 1, 5, 7), (1, 5, 7), (5, 7)],
)
def test_reader_selects_batch_and_channel_zero(shape):
    t = np.arange(int(np.prod(shape)), dtype=np.float32).reshape(shape)
    plane = resolve_matte_reader(len(shape))(t)
    assert plane.shape == (5, 7)
    assert plane[0, 0] == 0.0


def test_rank4_reader_ignores_extra_channels():
    t = np.zeros((1, 3, 2, 2), dtype=np.float32)
    t[0, 1] = 1.0
    assert (resolve_matte_reader(4)(t) == 0.0).all()


@pytest.mark.parametrize("rank", [0, 1, 5])
def test_unsupported_rank_raises(rank):
    with pytest.raises(InferenceError):
        resolve_matte_reader(rank)


def test_u2net_prefers_d0_over_earlier_outputs():
    assert pick_matte_output(["d1", "output_mask", "d0"], [4, 4, 4], U2NET) == 2


def test_u2net_falls_back_to_named_tokens():
    assert pick_matte_output(["x", "final_output"], [4, 4], U2NET) == 1


def test_modnet_prefers_pha():
    assert pick_matte_output(["features", "pha"], [4, 4], MODNET) == 1


def test_rank4_then_first():
    assert pick_matte_output(["a", "b"], [3, 4], MODNET) == 1
    assert pick_matte_output(["a", "b"], [3, 2], MODNET) == 0


def test_no_outputs_raises():
    with pytest.raises(InferenceError):
        pick_matte_output([], [], MODNET)


def test_extract_primary_output_unwraps_containers():
    torch = pytest.importorskip("torch")
    d0 = torch.zeros(1, 1, 4, 4)
    side = torch.ones(1, 1, 4, 4)

    assert extract_primary_output(d0) is d0
    assert extract_primary_output((d0, side)) is d0
    assert extract_primary_output(["meta", side]) is side
    assert extract_primary_output({"aux": side, "pha": d0}) is d0
    assert extract_primary_output({"aux": side}) is side
