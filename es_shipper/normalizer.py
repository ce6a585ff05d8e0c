"""Line parser and normalizer: raw NDJSON lines to Elasticsearch documents."""

import json
import logging
import sys
import threading
from dataclasses import dataclass

from es_shipper.events import EventEmitter
from es_shipper.merge import merge_deep
from es_shipper.timestamps import compute_timestamp

logger = logging.getLogger(__name__)

REASON_INVALID_JSON = "invalid JSON"
REASON_BOOLEAN = "Boolean value ignored"
REASON_NULL = "Null value ignored"


def _reject_constant(token: str):
    raise ValueError(f"{token} is not valid JSON")


@dataclass(frozen=True)
class Anomaly:
    """A raw line rejected before delivery."""

    line: str
    reason: str


def normalize_value(value, additional_fields: dict | None = None) -> dict:
    """Shape an already-decoded, non-null, non-boolean value into a document.

    Objects get ``message`` from ``msg`` (``"-"`` when missing or empty) and
    a freshly computed ``@timestamp``; ``msg`` and ``time`` are removed.
    Any other value is wrapped as ``{"data": value}``.
    """
    if isinstance(value, dict):
        document = dict(value)
        document["message"] = document.pop("msg", None) or "-"
        document["@timestamp"] = compute_timestamp(value)
        document.pop("time", None)
    else:
        document = {"data": value, "@timestamp": compute_timestamp(value)}

    if additional_fields:
        document = merge_deep(document, additional_fields)
    return document


def normalize_line(line: str, additional_fields: dict | None = None) -> dict | Anomaly:
    """Parse one raw line and return either a document or an Anomaly."""
    try:
        value = json.loads(line, parse_constant=_reject_constant)
    except ValueError:
        return Anomaly(line, REASON_INVALID_JSON)

    if isinstance(value, bool):
        return Anomaly(line, REASON_BOOLEAN)
    if value is None:
        return Anomaly(line, REASON_NULL)

    return normalize_value(value, additional_fields)


class LineNormalizer:
    """Stateful front of the pipeline.

    Emits ``unknown`` with the Anomaly for every rejected line and echoes
    unparseable lines verbatim to *raw_output* so they can be recovered.
    """

    def __init__(
        self,
        emitter: EventEmitter,
        additional_fields: dict | None = None,
        raw_output=None,
    ):
        self._emitter = emitter
        self._additional_fields = additional_fields or {}
        self._raw_output = raw_output
        self._lock = threading.Lock()
        self._documents = 0
        self._anomalies: dict[str, int] = {}

    def process(self, line: str) -> dict | None:
        """Normalize *line*; returns the document or None when it was rejected."""
        line = line.rstrip("\r\n")
        if not line.strip():
            return None

        result = normalize_line(line, self._additional_fields)

        if isinstance(result, Anomaly):
            with self._lock:
                self._anomalies[result.reason] = self._anomalies.get(result.reason, 0) + 1
            if result.reason == REASON_INVALID_JSON:
                self._echo_raw(line)
            self._emitter.emit("unknown", result)
            return None

        with self._lock:
            self._documents += 1
        return result

    def _echo_raw(self, line: str):
        out = self._raw_output if self._raw_output is not None else sys.stdout
        try:
            out.write(line + "\n")
            out.flush()
        except (OSError, ValueError) as exc:
            logger.warning("Could not write raw line to diagnostic output: %s", exc)

    @property
    def document_count(self) -> int:
        with self._lock:
            return self._documents

    @property
    def anomaly_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._anomalies)
