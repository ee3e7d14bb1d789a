"""Common utilities for flock."""

from .logger import setup_logger, get_logger
from .config import load_config, load_seed_config, SeedConfig

__all__ = ["setup_logger", "get_logger", "load_config", "load_seed_config", "SeedConfig"]
