"""
Test Suite: Stage Execution

Stage timing and error wrapping of the base processor, and the command
line entry point.
"""

import json

import pytest

from main import main
from src_stereo_corr.base import BaseProcessor
from src_stereo_corr.errors import StageError


class TwoStageProcessor(BaseProcessor):
    def __init__(self, settings, fail_in=None):
        super().__init__(settings, 'two_stage')
        self.fail_in = fail_in
        self.saved = None

    def _stage(self, name):
        if name == self.fail_in:
            raise RuntimeError(f"{name} broke")
        return name

    def _execute_processing_pipeline(self):
        return {name: self.run_stage(name, self._stage, name) for name in ('first', 'second')}

    def _save_processing_results(self, results):
        self.saved = results

    def _get_processor_specific_config(self):
        return {}

    def _is_processing_ready(self):
        return True


class TestBaseProcessor:
    def test_stages_timed_and_results_saved(self, make_settings):
        processor = TwoStageProcessor(make_settings())
        results = processor.run()

        assert results['first'] == 'first'
        assert set(results['stage_timings']) == {'first', 'second'}
        assert processor.saved is results

    def test_failure_names_stage(self, make_settings):
        processor = TwoStageProcessor(make_settings(), fail_in='second')
        with pytest.raises(StageError) as excinfo:
            processor.run()

        assert excinfo.value.stage == 'second'
        assert isinstance(excinfo.value.original_error, RuntimeError)
        assert processor.saved is None


class TestMain:
    def test_invalid_config_exits_with_error(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"out_prefix": str(tmp_path / "run"), "seed_mode": 9}))
        assert main([str(path)]) == 1

    def test_run_without_inputs_fails(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"out_prefix": str(tmp_path / "run"), "seed_mode": 0,
                                    "image_extension": ".npy"}))
        assert main([str(path)]) == 1
