import numpy as np
import pytest

torch = pytest.importorskip("torch")

from tracker.botsort.embedding import EmbeddingComputer  # noqa: E402


@pytest.fixture
def computer():
    model = torch.nn.Sequential(torch.nn.AdaptiveAvgPool2d(1), torch.nn.Flatten())
    return EmbeddingComputer(model, input_size=(16, 32))


@pytest.fixture
def frame():
    img = np.zeros((100, 100, 3), dtype=np.uint8)
    img[:, :50] = (255, 0, 0)
    img[:, 50:] = (0, 0, 255)
    return img


def test_crop_is_clipped(frame):
    crop = EmbeddingComputer.crop(frame, (-10., 90., 30., 30.))
    assert crop.shape == (10, 20, 3)
    assert EmbeddingComputer.crop(frame, (200., 200., 10., 10.)) is None


def test_extract_unit_vector(computer, frame):
    emb = computer.extract(frame, (0., 0., 40., 40.))
    assert emb.shape == (3,)
    assert np.linalg.norm(emb) == pytest.approx(1., abs=1e-5)


def test_different_colours_differ(computer, frame):
    left = computer.extract(frame, (0., 0., 40., 40.))
    right = computer.extract(frame, (60., 0., 40., 40.))
    again = computer.extract(frame, (5., 10., 30., 30.))
    assert float(left.dot(again)) == pytest.approx(1., abs=1e-5)
    assert float(left.dot(right)) < 0.99


def test_outside_frame_gives_none(computer, frame):
    assert computer.extract(frame, (500., 500., 10., 10.)) is None


def test_batch_marks_invalid_rows(computer, frame):
    embs = computer.compute_embedding(frame, [(0., 0., 40., 40.), (500., 500., 10., 10.)])
    assert embs.shape == (2, 3)
    assert np.all(np.isfinite(embs[0]))
    assert np.all(np.isnan(embs[1]))
