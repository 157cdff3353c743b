"""Shared fixtures: a recording fake transport and a fast-retry tracker factory."""
import threading

import pytest

from atom_tracker import Config, Tracker

OK = (None, {"Status": "OK"}, 200)


class FakeClient:
    """
    Records put_events calls and replays scripted responses.

    Scripted entries are tuples (error, data, status) or callables taking
    (stream, records); once the script runs out, `default` is returned.
    """

    def __init__(self, script=None, default=OK):
        self.calls = []
        self.script = list(script or [])
        self.default = default
        self.called = threading.Event()
        self._lock = threading.Lock()

    def put_events(self, stream, records, method="POST"):
        with self._lock:
            self.calls.append((stream, list(records)))
            response = self.script.pop(0) if self.script else self.default
        self.called.set()
        if callable(response):
            return response(stream, records)
        return response

    def records_for(self, stream):
        return [r for s, records in self.calls if s == stream for r in records]


def fast_config(**overrides):
    values = dict(
        flush_interval_s=3600,
        retry_base_delay_s=0.001,
        retry_ceiling_s=0.01,
        retry_jitter_min_s=0.0,
        retry_jitter_max_s=0.0,
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def make_tracker():
    trackers = []

    def factory(client, **overrides):
        tracker = Tracker(fast_config(**overrides), client=client)
        trackers.append(tracker)
        return tracker

    yield factory

    for tracker in trackers:
        tracker.stop(timeout=1)
