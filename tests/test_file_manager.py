"""
Test Suite: Artifact File Management

Artifact naming, image and mask loading, field and match persistence and
the tiled writer's overlap check.
"""

import numpy as np
import pytest

from conftest import textured_image, write_pair
from src_stereo_corr.disparity import BBox, DisparityField
from utils.image_processing import ImageProcessor


class TestArtifacts:
    def test_paths_use_prefix(self, file_manager, out_prefix):
        assert str(file_manager.artifact_path('left')) == f"{out_prefix}-L.npy"
        assert str(file_manager.artifact_path('seed')) == f"{out_prefix}-D_sub.npz"
        assert str(file_manager.match_file_path(low_resolution=True)) == \
            f"{out_prefix}-L_sub__R_sub.match.csv"

    def test_unknown_artifact(self, file_manager):
        with pytest.raises(KeyError):
            file_manager.artifact_path('nothing')

    def test_missing_mask_means_valid(self, file_manager, out_prefix):
        write_pair(out_prefix, textured_image(8, 12), textured_image(8, 12))
        np.save(f"{out_prefix}-lMask.npy", np.zeros((8, 12), dtype=np.uint8))

        left, right, left_mask, right_mask = file_manager.load_image_pair()

        assert left.shape == (8, 12)
        assert not left_mask.any()
        assert right_mask.all()
        assert file_manager.image_size('left') == (12, 8)

    def test_image_size_read_once(self, file_manager, out_prefix, monkeypatch):
        write_pair(out_prefix, textured_image(8, 12), textured_image(8, 12))
        reads = []
        original_size = ImageProcessor.image_size

        def counting_size(path):
            reads.append(path)
            return original_size(path)

        monkeypatch.setattr(ImageProcessor, "image_size", counting_size)

        assert file_manager.image_size('left') == (12, 8)
        assert file_manager.image_size('left') == (12, 8)
        assert file_manager.image_size('right') == (12, 8)
        assert len(reads) == 2

    def test_mask_size_mismatch(self, file_manager, out_prefix):
        write_pair(out_prefix, textured_image(8, 12), textured_image(8, 12))
        np.save(f"{out_prefix}-rMask.npy", np.ones((4, 4), dtype=np.uint8))
        with pytest.raises(ValueError):
            file_manager.load_image_pair()


class TestPersistence:
    def test_field_round_trip(self, file_manager):
        valid = np.array([[True, False], [False, True]])
        field = DisparityField(np.arange(8, dtype=float).reshape(2, 2, 2), valid)
        file_manager.save_seed(field)

        loaded = file_manager.load_seed()

        assert np.array_equal(loaded.valid, valid)
        assert np.array_equal(loaded.disparity[valid], field.disparity[valid])

    def test_missing_field(self, file_manager):
        assert file_manager.load_spread() is None

    def test_matches_round_trip(self, file_manager):
        path = file_manager.match_file_path()
        left = np.array([[1.0, 2.0], [3.0, 4.0]])
        right = np.array([[5.0, 6.0], [7.5, 8.5]])
        file_manager.save_matches(path, left, right)

        loaded_left, loaded_right = file_manager.load_matches(path)

        assert np.array_equal(loaded_left, left)
        assert np.array_equal(loaded_right, right)
        assert file_manager.remove_matches(path)
        assert not path.exists()

    def test_alignment_defaults_to_identity(self, file_manager):
        assert np.array_equal(file_manager.load_alignment('left'), np.eye(3))

    def test_overlapping_tiles_rejected(self, file_manager):
        tiles = [BBox(0, 0, 4, 4), BBox(2, 2, 6, 6)]
        with pytest.raises(RuntimeError):
            file_manager.write_tiled_disparity(
                6, 6, tiles, lambda tile: DisparityField.invalid(*tile.shape), num_threads=1)

    def test_singular_alignment_rejected(self, file_manager):
        path = file_manager.artifact_path('align_right')
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savetxt(path, np.zeros((3, 3)))
        with pytest.raises(ValueError):
            file_manager.load_alignment('right')
