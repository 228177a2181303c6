import json
from typing import Dict, Any, Optional
import os

from config.stereo_settings import StereoSettings, SeedMode, CostMode, PrefilterMode


class Config:
    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self.config_data = self._load_config(config_path) if config_path else {}
        if overrides:
            self.config_data.update(overrides)
            self._process_string_formatting(self.config_data)
        self._init_correlation_defaults()
        self._init_filtering_defaults()
        self._validate_output_prefix()
        self._validate_correlation_config()
        self._validate_window_config()

    def _load_config(self, config_path: str) -> Dict[str, Any]:
        with open(config_path, 'r') as config_file:
            config_data = json.load(config_file)

        # Process string formatting for paths that contain {case_name}
        self._process_string_formatting(config_data)
        return config_data

    def _process_string_formatting(self, config_data: Dict[str, Any]) -> None:
        """Process string formatting in config values, replacing {case_name} with actual value."""
        case_name = config_data.get("case_name", "")

        for key, value in config_data.items():
            if isinstance(value, str) and "{case_name}" in value:
                try:
                    config_data[key] = value.format(case_name=case_name)
                except (KeyError, ValueError) as e:
                    raise ValueError(f"Could not format value for key '{key}': {e}")

    def _init_correlation_defaults(self) -> None:
        """Initialize default parameters for seeded correlation."""
        defaults = {
            "seed_mode": int(SeedMode.LOWRES_CORRELATION),
            "search_range": None,        # [min_x, min_y, max_x, max_y]
            "seed_percent_pad": 0.25,    # low-res search range padding
            "corr_kernel": [21, 21],
            "cost_mode": int(CostMode.CROSS_CORRELATION),
            "use_sgm": False,
            "pre_filter_mode": int(PrefilterMode.LOG),
            "slogW": 1.5,                # LoG sigma for the low-resolution pass
            "xcorr_threshold": 2.0,
            "corr_max_levels": 5,
            "corr_timeout": 900,         # seconds per tile, 0 disables
            "lowres_timeout_factor": 5,
            "corr_tile_size": 1024,
            "corr_collar_size": 512,
            "corr_blob_filter_area": 0,
            "use_local_homography": False,
            "min_homography_points": 4,
            "left_image_crop_win": None,  # [x, y, width, height]
            "right_image_crop_win": None,
            "trans_crop_win": None,
            "skip_low_res_disparity_comp": False,
            "compute_low_res_disparity_only": False,
            "num_threads": 4,
            "image_extension": ".tif",
            "save_preview": False,
            "ip_per_image": 2000,
            "log_level": "INFO",
            "log_file": None
        }
        for k, v in defaults.items():
            self.config_data.setdefault(k, v)

    def _init_filtering_defaults(self) -> None:
        """Initialize default parameters for seed outlier removal.

        The low-resolution factors scale the full-resolution filter values
        down to what works on the seed; they are kept configurable.
        """
        defaults = {
            "rm_threshold": 3.0,
            "rm_min_matches": 60,             # percent
            "rm_quantile_percentile": 0.85,
            "rm_quantile_multiple": -1.0,     # <= 0 selects the threshold filter
            "lowres_rm_half_kernel": [1, 1],
            "lowres_rm_threshold_factor": 2.0 / 3.0,
            "lowres_rm_min_matches_factor": 0.5 / 0.6
        }
        for k, v in defaults.items():
            self.config_data.setdefault(k, v)

    def _validate_output_prefix(self) -> None:
        out_prefix = self.config_data.get("out_prefix")
        if not out_prefix or not isinstance(out_prefix, str):
            raise ValueError("out_prefix must be a non-empty string")

        # Artifacts are written next to the prefix
        out_dir = os.path.dirname(out_prefix)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)

    def _validate_correlation_config(self) -> None:
        """Validate correlation parameters."""
        data = self.config_data

        try:
            SeedMode(data["seed_mode"])
        except ValueError:
            raise ValueError(f"Unknown value {data['seed_mode']} for seed_mode")
        try:
            PrefilterMode(data["pre_filter_mode"])
        except ValueError:
            raise ValueError(f"Unknown value {data['pre_filter_mode']} for pre_filter_mode")
        try:
            CostMode(data["cost_mode"])
        except ValueError:
            raise ValueError(f"Unknown value {data['cost_mode']} for cost_mode")
        # cost_mode compatibility with use_sgm is checked when the engine is built

        kernel = data["corr_kernel"]
        if len(kernel) != 2 or any(int(k) <= 0 or int(k) % 2 == 0 for k in kernel):
            raise ValueError(f"corr_kernel must be two positive odd integers, got {kernel}")

        search_range = data["search_range"]
        if search_range is not None:
            if len(search_range) != 4:
                raise ValueError("search_range must be [min_x, min_y, max_x, max_y]")
            if search_range[0] > search_range[2] or search_range[1] > search_range[3]:
                raise ValueError(f"search_range min must not exceed max, got {search_range}")

        for key in ("corr_tile_size", "num_threads", "min_homography_points"):
            if not isinstance(data[key], int) or data[key] <= 0:
                raise ValueError(f"{key} must be a positive integer")

        for key in ("corr_timeout", "corr_collar_size", "corr_blob_filter_area"):
            if data[key] < 0:
                raise ValueError(f"{key} must be non-negative")

        if data["seed_percent_pad"] < 0:
            raise ValueError("seed_percent_pad must be non-negative")

        if data["min_homography_points"] < 4:
            raise ValueError("min_homography_points must be at least 4")

        half_kernel = data["lowres_rm_half_kernel"]
        if len(half_kernel) != 2 or any(int(k) < 0 for k in half_kernel):
            raise ValueError("lowres_rm_half_kernel must be two non-negative integers")

        if data["rm_quantile_multiple"] > 0 and not 0 < data["rm_quantile_percentile"] <= 1:
            raise ValueError("rm_quantile_percentile must be in (0, 1]")

    def _validate_window_config(self) -> None:
        for key in ("left_image_crop_win", "right_image_crop_win", "trans_crop_win"):
            window = self.config_data.get(key)
            if window is None:
                continue
            if len(window) != 4:
                raise ValueError(f"{key} must be [x, y, width, height]")
            if window[2] < 0 or window[3] < 0:
                raise ValueError(f"{key} must have a non-negative size, got {window}")

    def to_settings(self) -> StereoSettings:
        """Freeze the configuration into the settings object passed to every stage."""
        data = self.config_data

        def _tuple(key):
            value = data.get(key)
            return tuple(value) if value is not None else None

        return StereoSettings(
            out_prefix=data["out_prefix"],
            seed_mode=SeedMode(data["seed_mode"]),
            search_range=_tuple("search_range"),
            seed_percent_pad=float(data["seed_percent_pad"]),
            corr_kernel=tuple(int(k) for k in data["corr_kernel"]),
            cost_mode=CostMode(data["cost_mode"]),
            use_sgm=bool(data["use_sgm"]),
            pre_filter_mode=PrefilterMode(data["pre_filter_mode"]),
            slogW=float(data["slogW"]),
            xcorr_threshold=float(data["xcorr_threshold"]),
            corr_max_levels=int(data["corr_max_levels"]),
            corr_timeout=int(data["corr_timeout"]),
            lowres_timeout_factor=int(data["lowres_timeout_factor"]),
            corr_tile_size=int(data["corr_tile_size"]),
            corr_collar_size=int(data["corr_collar_size"]),
            corr_blob_filter_area=int(data["corr_blob_filter_area"]),
            rm_threshold=float(data["rm_threshold"]),
            rm_min_matches=float(data["rm_min_matches"]),
            rm_quantile_percentile=float(data["rm_quantile_percentile"]),
            rm_quantile_multiple=float(data["rm_quantile_multiple"]),
            lowres_rm_half_kernel=tuple(int(k) for k in data["lowres_rm_half_kernel"]),
            lowres_rm_threshold_factor=float(data["lowres_rm_threshold_factor"]),
            lowres_rm_min_matches_factor=float(data["lowres_rm_min_matches_factor"]),
            use_local_homography=bool(data["use_local_homography"]),
            min_homography_points=int(data["min_homography_points"]),
            left_image_crop_win=_tuple("left_image_crop_win"),
            right_image_crop_win=_tuple("right_image_crop_win"),
            trans_crop_win=_tuple("trans_crop_win"),
            skip_low_res_disparity_comp=bool(data["skip_low_res_disparity_comp"]),
            compute_low_res_disparity_only=bool(data["compute_low_res_disparity_only"]),
            num_threads=int(data["num_threads"]),
            image_extension=data["image_extension"],
            save_preview=bool(data["save_preview"]),
            ip_per_image=int(data["ip_per_image"])
        )

    def get_correlation_summary(self) -> str:
        """Get a one-line summary of the correlation setup."""
        search_range = self.config_data.get("search_range")
        return (f"seed_mode={SeedMode(self.config_data['seed_mode']).name}, "
                f"kernel={self.config_data['corr_kernel']}, "
                f"cost_mode={self.config_data['cost_mode']}, "
                f"search_range={search_range if search_range is not None else 'auto'}")

    def __getattr__(self, name: str) -> Any:
        if name == "config_data":
            raise AttributeError(name)
        if name in self.config_data:
            return self.config_data[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")
