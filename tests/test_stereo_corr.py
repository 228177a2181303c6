"""
Test Suite: Stereo Correlation Driver

Stage ordering, search range resolution, artifacts of a full run and stage
error reporting.
"""

import json

import numpy as np
import pytest

from conftest import RecordingEngine, textured_image, shifted_right_image, write_pair
from config.stereo_settings import SeedMode, CostMode, PrefilterMode
from src_stereo_corr.disparity import DisparityField
from src_stereo_corr.errors import ConfigurationError, StageError
from src_stereo_corr.stereo_corr import StereoCorrelator


def uniform_field(rows, cols, dx, dy):
    return DisparityField.from_components(np.full((rows, cols), float(dx)),
                                          np.full((rows, cols), float(dy)),
                                          np.ones((rows, cols), dtype=bool))


def write_scene(out_prefix, shift=2):
    full = textured_image(32, 32, seed=21)
    sub = full[::2, ::2].copy()
    write_pair(out_prefix, full, shifted_right_image(full, shift))
    write_pair(out_prefix, sub, shifted_right_image(sub, shift // 2), suffix="_sub")


class TestSearchRange:
    def test_no_seed_keeps_user_range(self, make_settings):
        engine = RecordingEngine()
        settings = make_settings(seed_mode=SeedMode.NONE, search_range=(-20, -5, 20, 5))
        correlator = StereoCorrelator(settings, engine=engine)

        correlator.lowres_correlation()

        assert correlator.read_search_range().as_list() == [-20, -5, 20, 5]
        assert engine.calls == 0

    def test_cached_seed_defines_range(self, make_settings, file_manager, out_prefix):
        write_pair(out_prefix, textured_image(32, 32), textured_image(32, 32))
        write_pair(out_prefix, textured_image(16, 16), textured_image(16, 16), suffix="_sub")
        file_manager.save_seed(uniform_field(16, 16, 3, -1))
        engine = RecordingEngine()
        correlator = StereoCorrelator(make_settings(search_range=(-20, -5, 20, 5)), engine=engine)

        correlator.lowres_correlation()

        assert engine.calls == 0
        assert correlator.global_range.as_list() == [6, -2, 6, -2]


class TestFullRun:

    def test_block_matching_pipeline(self, make_settings, file_manager, out_prefix):
        write_scene(out_prefix)
        settings = make_settings(search_range=(-4, -2, 4, 2), corr_kernel=(5, 5),
                                 corr_tile_size=16, corr_collar_size=4,
                                 pre_filter_mode=PrefilterMode.NONE, xcorr_threshold=-1,
                                 save_preview=True)

        results = StereoCorrelator(settings).stereo_correlation()

        output = file_manager.load_field(file_manager.artifact_path('disparity'))
        assert output.shape == (32, 32)
        interior = (slice(6, -6), slice(6, -6))
        assert np.mean(output.dx[interior][output.valid[interior]] == 2) > 0.9
        assert 'correlation' in results['stage_timings']
        assert file_manager.artifact_path('seed').exists()
        assert file_manager.artifact_path('preview').exists()

        with open(file_manager.artifact_path('metadata')) as f:
            metadata = json.load(f)
        assert metadata['processing']['processing_type'] == 'stereo_correlation'

    def test_lowres_only_stops_after_seed(self, make_settings, file_manager, out_prefix):
        write_scene(out_prefix)
        engine = RecordingEngine(dx=1)
        settings = make_settings(search_range=(-4, -2, 4, 2), compute_low_res_disparity_only=True)

        StereoCorrelator(settings, engine=engine).stereo_correlation()

        assert engine.calls == 1
        assert file_manager.artifact_path('seed').exists()
        assert not file_manager.artifact_path('disparity').exists()

    def test_skip_lowres_uses_existing_seed(self, make_settings, file_manager, out_prefix):
        write_scene(out_prefix)
        file_manager.save_seed(uniform_field(16, 16, 1, 0))
        engine = RecordingEngine()
        settings = make_settings(skip_low_res_disparity_comp=True, corr_tile_size=16,
                                 corr_collar_size=0)

        correlator = StereoCorrelator(settings, engine=engine)
        correlator.stereo_correlation()

        assert engine.calls == 4
        # Seed (1, 0) at scale 2 grows to [0, -2, 4, 2]
        assert all(request.search_range.as_list() == [0, 0, 4, 4] for request in engine.requests)


class TestStageErrors:
    def test_missing_inputs_name_stage(self, make_settings):
        correlator = StereoCorrelator(make_settings(seed_mode=SeedMode.NONE), engine=RecordingEngine())
        with pytest.raises(StageError) as excinfo:
            correlator.stereo_correlation()
        assert excinfo.value.stage == 'lowres_correlation'

    def test_contradictory_cost_mode_fails_fast(self, make_settings):
        with pytest.raises(ConfigurationError):
            StereoCorrelator(make_settings(cost_mode=CostMode.CENSUS_TRANSFORM))

    def test_external_seed_missing(self, make_settings, out_prefix):
        write_scene(out_prefix)
        correlator = StereoCorrelator(make_settings(seed_mode=SeedMode.EXTERNAL_SUPPLIED),
                                      engine=RecordingEngine())
        with pytest.raises(StageError) as excinfo:
            correlator.stereo_correlation()
        assert isinstance(excinfo.value.original_error, ConfigurationError)
