"""
Test Suite: Configuration

JSON loading with {case_name} formatting, defaults, validation and the
frozen settings view.
"""

import json

import pytest

from config.config import Config
from config.stereo_settings import SeedMode, CostMode, StereoSettings


@pytest.fixture
def config_file(tmp_path):
    def _write(**values):
        data = {"case_name": "pair01", "out_prefix": str(tmp_path / "{case_name}" / "run")}
        data.update(values)
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        return str(path)
    return _write


class TestConfigLoading:
    def test_case_name_formatting(self, config_file, tmp_path):
        config = Config(config_file())
        assert config.out_prefix == str(tmp_path / "pair01" / "run")
        assert (tmp_path / "pair01").is_dir()

    def test_defaults(self, config_file):
        config = Config(config_file())
        assert config.seed_mode == SeedMode.LOWRES_CORRELATION
        assert config.corr_kernel == [21, 21]
        assert config.corr_tile_size == 1024
        assert config.rm_quantile_multiple == -1.0

    def test_overrides(self, tmp_path):
        config = Config(overrides={"out_prefix": str(tmp_path / "run"), "corr_timeout": 0})
        assert config.corr_timeout == 0

    def test_unknown_attribute(self, config_file):
        with pytest.raises(AttributeError):
            Config(config_file()).no_such_key


class TestConfigValidation:
    def test_missing_out_prefix(self):
        with pytest.raises(ValueError):
            Config(overrides={"corr_timeout": 0})

    @pytest.mark.parametrize("values", [
        {"seed_mode": 9},
        {"cost_mode": 7},
        {"pre_filter_mode": 5},
        {"corr_kernel": [4, 5]},
        {"search_range": [10, 0, -10, 0]},
        {"corr_tile_size": 0},
        {"corr_collar_size": -1},
        {"min_homography_points": 3},
        {"trans_crop_win": [0, 0, -1, 5]},
    ])
    def test_invalid_values(self, config_file, values):
        with pytest.raises(ValueError):
            Config(config_file(**values))


class TestStereoSettings:
    def test_to_settings(self, config_file):
        settings = Config(config_file(search_range=[-20, -5, 20, 5],
                                      cost_mode=0)).to_settings()

        assert isinstance(settings, StereoSettings)
        assert settings.search_range == (-20, -5, 20, 5)
        assert settings.corr_kernel == (21, 21)
        assert settings.cost_mode == CostMode.ABSOLUTE_DIFFERENCE
        assert settings.is_search_defined

    def test_settings_are_frozen(self, make_settings):
        settings = make_settings()
        with pytest.raises(AttributeError):
            settings.corr_timeout = 10

    def test_crop_left_and_right(self, make_settings):
        assert not make_settings(left_image_crop_win=(0, 0, 5, 5)).crop_left_and_right
        assert not make_settings(left_image_crop_win=(0, 0, 0, 0),
                                 right_image_crop_win=(0, 0, 0, 0)).crop_left_and_right
        assert make_settings(left_image_crop_win=(0, 0, 5, 5),
                             right_image_crop_win=(1, 1, 5, 5)).crop_left_and_right

    def test_summary_names_enums(self, make_settings):
        summary = make_settings().summary()
        assert summary['seed_mode'] == 'LOWRES_CORRELATION'
        assert summary['cost_mode'] == 'CROSS_CORRELATION'
