"""
Configuration loader for the Atom event tracker.

Supports INI file and environment variable overrides.
Safe defaults that keep batches small and retries bounded.
"""
import os
import configparser
from dataclasses import dataclass, fields
from typing import Optional
import structlog

from .exceptions import InvalidArgumentError

logger = structlog.get_logger()

DEFAULT_ENDPOINT = "https://track.atom-data.io/"


@dataclass
class Config:
    """Tracker configuration with safe defaults."""

    # Atom endpoint
    endpoint: str = DEFAULT_ENDPOINT
    auth: str = ""  # HMAC key, empty disables signing
    request_timeout_s: float = 5.0

    # Flush triggers
    flush_interval_s: float = 10.0  # Forced flush of every stream
    bulk_len: int = 20  # Records per batch
    bulk_size_bytes: int = 10 * 1024  # Serialized batch size

    # Retry (exponential backoff + jitter)
    retry_base_delay_s: float = 1.0
    retry_ceiling_s: float = 20 * 60.0  # Give up after 20 minutes
    retry_jitter_min_s: float = 0.1
    retry_jitter_max_s: float = 1.1

    # Concurrent sends across streams
    send_workers: int = 4

    # Circuit breaker
    circuit_breaker_fail_max: int = 5
    circuit_breaker_timeout_s: int = 60


_FIELD_TYPES = {
    'endpoint': str,
    'auth': str,
    'request_timeout_s': float,
    'flush_interval_s': float,
    'bulk_len': int,
    'bulk_size_bytes': int,
    'retry_base_delay_s': float,
    'retry_ceiling_s': float,
    'retry_jitter_min_s': float,
    'retry_jitter_max_s': float,
    'send_workers': int,
    'circuit_breaker_fail_max': int,
    'circuit_breaker_timeout_s': int,
}

# INI section -> {option: field}
_INI_SECTIONS = {
    'atom': {
        'endpoint': 'endpoint',
        'auth': 'auth',
        'timeout_s': 'request_timeout_s',
    },
    'tracker': {
        'flush_interval_s': 'flush_interval_s',
        'bulk_len': 'bulk_len',
        'bulk_size_bytes': 'bulk_size_bytes',
        'send_workers': 'send_workers',
    },
    'retry': {
        'base_delay_s': 'retry_base_delay_s',
        'ceiling_s': 'retry_ceiling_s',
        'jitter_min_s': 'retry_jitter_min_s',
        'jitter_max_s': 'retry_jitter_max_s',
    },
    'circuit_breaker': {
        'fail_max': 'circuit_breaker_fail_max',
        'timeout_s': 'circuit_breaker_timeout_s',
    },
}

ENV_PREFIX = 'ATOM_TRACKER_'


def apply_overrides(config: Config, **overrides) -> Config:
    """
    Apply keyword overrides to a configuration.

    Args:
        config: Base configuration (modified in place)
        **overrides: Config field names and values

    Raises:
        InvalidArgumentError: On an unknown field name

    Returns:
        The same Config, validated
    """
    known = {f.name for f in fields(Config)}
    for name, value in overrides.items():
        if name not in known:
            raise InvalidArgumentError(
                f"Unknown tracker option: {name}",
                details={'option': name}
            )
        setattr(config, name, value)
    return validate_config(config)


def validate_config(config: Config) -> Config:
    """Clamp values that would break batching or retry."""
    if config.bulk_len < 1:
        logger.warning("bulk_len_increased", requested=config.bulk_len, minimum=1)
        config.bulk_len = 1

    if config.bulk_size_bytes < 1:
        logger.warning("bulk_size_bytes_increased", requested=config.bulk_size_bytes, minimum=1)
        config.bulk_size_bytes = 1

    if config.flush_interval_s <= 0:
        raise InvalidArgumentError(
            "flush_interval_s must be positive",
            details={'flush_interval_s': config.flush_interval_s}
        )

    if config.retry_base_delay_s <= 0:
        raise InvalidArgumentError(
            "retry_base_delay_s must be positive",
            details={'retry_base_delay_s': config.retry_base_delay_s}
        )

    if config.retry_ceiling_s <= 0:
        raise InvalidArgumentError(
            "retry_ceiling_s must be positive",
            details={'retry_ceiling_s': config.retry_ceiling_s}
        )

    for attr in ('retry_jitter_min_s', 'retry_jitter_max_s'):
        if getattr(config, attr) < 0:
            logger.warning("retry_jitter_increased", option=attr, requested=getattr(config, attr), minimum=0)
            setattr(config, attr, 0.0)

    if config.send_workers < 1:
        logger.warning("send_workers_increased", requested=config.send_workers, minimum=1)
        config.send_workers = 1

    if config.retry_jitter_min_s > config.retry_jitter_max_s:
        logger.warning(
            "retry_jitter_bounds_swapped",
            jitter_min_s=config.retry_jitter_min_s,
            jitter_max_s=config.retry_jitter_max_s
        )
        config.retry_jitter_min_s, config.retry_jitter_max_s = (
            config.retry_jitter_max_s, config.retry_jitter_min_s
        )

    if not config.endpoint.endswith('/'):
        config.endpoint += '/'

    return config


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from INI file and environment variables.

    Priority:
    1. Environment variables (highest)
    2. INI file
    3. Defaults (lowest)

    Environment variable format: ATOM_TRACKER_<FIELD_NAME>
    Example: ATOM_TRACKER_ENDPOINT, ATOM_TRACKER_BULK_LEN
    """
    config = Config()

    if config_path and os.path.exists(config_path):
        parser = configparser.ConfigParser()
        parser.read(config_path)

        for section, options in _INI_SECTIONS.items():
            if not parser.has_section(section):
                continue
            for option, attr in options.items():
                if parser.has_option(section, option):
                    type_fn = _FIELD_TYPES[attr]
                    setattr(config, attr, type_fn(parser.get(section, option)))

        logger.info("config_loaded_from_file", path=config_path)

    for attr, type_fn in _FIELD_TYPES.items():
        env_var = ENV_PREFIX + attr.upper()
        value = os.environ.get(env_var)
        if value is not None:
            setattr(config, attr, type_fn(value))
            logger.debug("config_override_from_env", var=env_var)

    return validate_config(config)
