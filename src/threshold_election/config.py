from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional
import logging

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("election.yaml")


@dataclass
class EngineConfig:
    # upper bound for the discrete-log search when decoding a tally
    dlog_max: int = 200_000
    decrypt_workers: int = 4
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    bot_identity: str = "bot@election.local"
    # tolerated drift between a voter device clock and the server clock
    clock_skew_ms: int = 0

    def __post_init__(self):
        if self.log_file is not None:
            self.log_file = Path(self.log_file)
        if self.dlog_max < 1:
            raise ConfigurationError("dlog_max must be positive")
        if self.decrypt_workers < 1:
            raise ConfigurationError("decrypt_workers must be positive")
        if self.clock_skew_ms < 0:
            raise ConfigurationError("clock_skew_ms must not be negative")


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from a YAML file or return defaults"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        logger.info(f"No config file at {config_path}, using defaults")
        return EngineConfig()

    with open(config_path, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"config file {config_path} must hold a mapping")

    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(config_data) - known)
    if unknown:
        raise ConfigurationError(
            f"unknown config keys in {config_path}", ", ".join(unknown))

    return EngineConfig(**config_data)


def save_config(config: EngineConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_data = {
        'dlog_max': config.dlog_max,
        'decrypt_workers': config.decrypt_workers,
        'log_level': config.log_level,
        'log_file': str(config.log_file) if config.log_file else None,
        'bot_identity': config.bot_identity,
        'clock_skew_ms': config.clock_skew_ms,
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
    logger.info(f"Configuration saved to {config_path}")
