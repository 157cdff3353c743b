"""Transmission layer for buffering and sending data to Atom."""
from .http_client import AtomClient, Response
from .circuit_breaker import create_circuit_breaker, is_circuit_open
from .buffer import StreamBuffer, Batch, serialize_record
from .backoff import Backoff

__all__ = [
    'AtomClient',
    'Response',
    'create_circuit_breaker',
    'is_circuit_open',
    'StreamBuffer',
    'Batch',
    'serialize_record',
    'Backoff',
]
