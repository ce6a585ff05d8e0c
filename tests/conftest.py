"""Shared pytest fixtures for the es-shipper test suite."""

from unittest.mock import MagicMock

import pytest

from es_shipper.config import Config
from es_shipper.events import EventEmitter


class EventRecorder:
    """Collects every emitted event as (name, args) pairs."""

    NAMES = ("unknown", "error", "insert_error", "insert")

    def __init__(self, emitter):
        self.events: list[tuple[str, tuple]] = []
        for name in self.NAMES:
            emitter.on(name, self._recorder(name))

    def _recorder(self, name):
        def record(*args):
            self.events.append((name, args))
        return record

    def of(self, name: str) -> list:
        return [args[0] for event, args in self.events if event == name]


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorder(emitter) -> EventRecorder:
    return EventRecorder(emitter)


@pytest.fixture
def mock_client() -> MagicMock:
    """A stand-in Elasticsearch client; bulk traffic is patched per test."""
    return MagicMock()


@pytest.fixture
def config() -> Config:
    """Config with timer flushes disabled so tests control every flush."""
    return Config(flush_interval=0, flush_bytes=10_000_000, index="logs-%{DATE}")


def _fake_bulk(*oks: bool):
    """Build a fake streaming_bulk that yields one result per action."""

    def fake_streaming_bulk(client, actions, **kwargs):
        actions = list(actions)
        for i, action in enumerate(actions):
            ok = oks[i] if i < len(oks) else True
            if ok:
                yield True, {action["_op_type"]: {"_index": action["_index"], "status": 201}}
            else:
                yield False, {
                    action["_op_type"]: {
                        "_index": action["_index"],
                        "status": 400,
                        "error": {"type": "mapper_parsing_exception"},
                    }
                }

    return fake_streaming_bulk


@pytest.fixture
def bulk_results():
    """Factory: bulk_results(True, False) fails the second action of each request."""
    return _fake_bulk

