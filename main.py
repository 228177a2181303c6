import argparse
import sys

from config.config import Config
from src_stereo_corr.errors import StereoCorrelationError
from src_stereo_corr.stereo_corr import StereoCorrelator
from utils.logger_config import LoggerConfig, get_logger


def load_config(config_path: str) -> Config:
    """
    Load configuration from a JSON file.

    Args:
        config_path (str): Path to the configuration JSON file.

    Returns:
        Config: Loaded configuration object.
    """
    return Config(config_path)


def process_stereo_correlation(config: Config) -> None:
    """
    Run the seeded correlation using the provided configuration.

    Args:
        config (Config): Configuration object containing processing parameters.
    """
    LoggerConfig.setup_root_logger(level=config.log_level, log_file=config.log_file, force=True)
    get_logger(__name__).info(config.get_correlation_summary())

    correlator = StereoCorrelator(config.to_settings())
    correlator.stereo_correlation()


def main(argv=None) -> int:
    """
    Main function to execute the stereo correlation pipeline.
    """
    parser = argparse.ArgumentParser(description="Seeded, tiled stereo correlation")
    parser.add_argument("config", nargs="?", default="config/config_stereo_corr.json",
                        help="Path to the JSON configuration file")
    args = parser.parse_args(argv)

    logger = get_logger(__name__)
    try:
        config = load_config(args.config)
        process_stereo_correlation(config)
    except (StereoCorrelationError, ValueError, OSError) as e:
        logger.error(str(e))
        return 1

    logger.info("Processing completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
