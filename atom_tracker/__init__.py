"""Buffered event tracker for ironSource Atom streams."""
from .config import Config, load_config
from .exceptions import (
    TrackerError,
    InvalidArgumentError,
    SerializationError,
    TrackerStoppedError,
    TransportError,
    TransientTransportError,
    TerminalTransportError,
    RetryExhaustedError,
)
from .log import configure_logging
from .tracker import Tracker, FlushResult
from .transmission.http_client import AtomClient, Response, SDK_VERSION as __version__

__all__ = [
    'Config',
    'load_config',
    'configure_logging',
    'Tracker',
    'FlushResult',
    'AtomClient',
    'Response',
    'TrackerError',
    'InvalidArgumentError',
    'SerializationError',
    'TrackerStoppedError',
    'TransportError',
    'TransientTransportError',
    'TerminalTransportError',
    'RetryExhaustedError',
]
