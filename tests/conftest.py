"""
Shared fixtures: synthetic image pairs written under ``tmp_path`` and a
recording engine that returns a constant disparity.
"""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from config.stereo_settings import StereoSettings
from src_stereo_corr.disparity import DisparityField, DisparityFileManager, MatchingEngine


class RecordingEngine(MatchingEngine):
    """Returns a constant, fully valid disparity and keeps every request."""

    def __init__(self, dx: float = 0.0, dy: float = 0.0):
        super().__init__()
        self.dx = dx
        self.dy = dy
        self.requests = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def match(self, request):
        self.requests.append(request)
        rows, cols = request.left_image.shape[:2]
        return DisparityField.from_components(np.full((rows, cols), float(self.dx)),
                                              np.full((rows, cols), float(self.dy)),
                                              np.ones((rows, cols), dtype=bool))


def textured_image(rows: int, cols: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return (rng.random((rows, cols)) * 255.0).astype(np.float32)


def shifted_right_image(left: np.ndarray, dx: int) -> np.ndarray:
    """Right image in which every left pixel (x, y) appears at (x + dx, y)."""
    right = np.zeros_like(left)
    if dx >= 0:
        right[:, dx:] = left[:, :left.shape[1] - dx]
    else:
        right[:, :dx] = left[:, -dx:]
    return right


def write_pair(out_prefix: str, left: np.ndarray, right: np.ndarray, suffix: str = "") -> None:
    np.save(f"{out_prefix}-L{suffix}.npy", left)
    np.save(f"{out_prefix}-R{suffix}.npy", right)


@pytest.fixture
def out_prefix(tmp_path):
    return str(tmp_path / "run")


@pytest.fixture
def make_settings(out_prefix):
    def _make(**overrides) -> StereoSettings:
        values = dict(out_prefix=out_prefix, corr_timeout=0, image_extension=".npy",
                      num_threads=2)
        values.update(overrides)
        return StereoSettings(**values)
    return _make


@pytest.fixture
def file_manager(out_prefix):
    return DisparityFileManager(out_prefix, image_extension=".npy")


@pytest.fixture
def engine():
    return RecordingEngine()
