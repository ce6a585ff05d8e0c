"""Bulk delivery adapter — buffers documents and ships them with the bulk API.

The adapter owns the connection pool of the Elasticsearch client. Outcomes are
reported through the pipeline's EventEmitter instead of return values:

- ``insert_error``: a document the cluster rejected (DroppedDocumentError)
- ``error``: a flush that failed as a whole (transport error)
- ``insert``: aggregate statistics, once, when the adapter is closed

Transport failures resurrect the node pool and publish ``resurrect`` on the
adapter's diagnostic channel. The adapter subscribes to that notification once
and rebuilds its bulk operation on every occurrence.
"""

import json
import logging
import threading
import time
from enum import Enum

from elastic_transport import TransportError
from elasticsearch import ApiError, helpers

from es_shipper.events import EventEmitter
from es_shipper.index_name import IndexNameResolver
from es_shipper.metrics import DeliveryStats

logger = logging.getLogger(__name__)

OP_TYPES = ("create", "index")
ORIGINAL_TIMESTAMP_FIELD = "@original_timestamp"


class AdapterState(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class DroppedDocumentError(Exception):
    """A document rejected by the cluster during a bulk write."""

    def __init__(self, document: dict, item: dict | None = None, reason: str = "Dropped document"):
        super().__init__(reason)
        self.document = document
        self.item = item or {}

    @property
    def status(self) -> int | None:
        for result in self.item.values():
            if isinstance(result, dict):
                return result.get("status")
        return None


def _estimate_size(action: dict) -> int:
    header = {action["_op_type"]: {"_index": action["_index"]}}
    body = json.dumps(action["_source"], default=str)
    return len(json.dumps(header)) + len(body.encode("utf-8")) + 2


class BulkOperation:
    """One bulk indexing run bound to a client and an event channel.

    Buffered actions are sent when their estimated size reaches
    *flush_bytes*, when *flush_interval_ms* elapses since the last flush,
    or when the operation is closed.
    """

    def __init__(
        self,
        client,
        events: EventEmitter,
        stats: DeliveryStats,
        on_transport_error,
        flush_bytes: int = 1000,
        flush_interval_ms: int = 30000,
    ):
        self._client = client
        self._events = events
        self._stats = stats
        self._on_transport_error = on_transport_error
        self._flush_bytes = flush_bytes
        self._flush_interval = flush_interval_ms / 1000.0

        self._buffer: list[tuple[dict, int]] = []
        self._buffered_bytes = 0
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._stopped = False
        self._stop_event = threading.Event()
        self._last_flush = time.monotonic()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if self._flush_interval <= 0:
            return
        self._thread = threading.Thread(
            target=self._timer_loop, name="bulk-flush-timer", daemon=True
        )
        self._thread.start()

    def detach(self) -> list[tuple[dict, int]]:
        """Stop accepting actions and hand back whatever is still buffered."""
        self._stop_event.set()
        with self._lock:
            self._stopped = True
            pending = self._buffer
            self._buffer = []
            self._buffered_bytes = 0
        return pending

    def close(self, timeout: float = 5.0):
        """Stop accepting actions, flush the rest and wait for the timer thread."""
        self._stop_event.set()
        with self._lock:
            self._stopped = True
        self.flush("final")
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def add(self, action: dict, size: int | None = None) -> bool:
        """Buffer one action. Returns False once the operation was stopped."""
        if size is None:
            size = _estimate_size(action)

        with self._lock:
            if self._stopped:
                return False
            self._buffer.append((action, size))
            self._buffered_bytes += size
            full = self._buffered_bytes >= self._flush_bytes

        if full:
            self.flush("size")
        return True

    def extend(self, pending: list[tuple[dict, int]]):
        for action, size in pending:
            self.add(action, size)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    def _timer_loop(self):
        tick = min(self._flush_interval, 1.0)
        while not self._stop_event.wait(tick):
            with self._lock:
                due = bool(self._buffer) and (
                    time.monotonic() - self._last_flush >= self._flush_interval
                )
            if due:
                self.flush("timer")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def flush(self, trigger: str = "size"):
        with self._send_lock:
            with self._lock:
                batch = self._buffer
                total_bytes = self._buffered_bytes
                self._buffer = []
                self._buffered_bytes = 0
                self._last_flush = time.monotonic()

            if batch:
                self._send([action for action, _ in batch], total_bytes, trigger)

    def _send(self, actions: list[dict], total_bytes: int, trigger: str):
        documents = [action["_source"] for action in actions]
        successful = 0
        failed = 0
        start = time.monotonic()

        try:
            results = helpers.streaming_bulk(
                self._client,
                actions,
                chunk_size=len(actions),
                raise_on_error=False,
            )
            for (ok, item), document in zip(results, documents):
                if ok:
                    successful += 1
                else:
                    failed += 1
                    self._events.emit("insert_error", DroppedDocumentError(document, item))
        except (TransportError, ApiError) as exc:
            lost = len(actions) - successful - failed
            self._stats.record_transport_error(lost)
            logger.warning("Bulk request of %d document(s) failed: %s", len(actions), exc)
            self._on_transport_error(exc)
            return

        elapsed_ms = (time.monotonic() - start) * 1000
        self._stats.record_flush(
            successful=successful,
            failed=failed,
            bytes_sent=total_bytes,
            send_time_ms=elapsed_ms,
            trigger=trigger,
        )
        logger.debug(
            "Flushed %d document(s) (%d failed, %d bytes, trigger=%s) in %.1fms",
            len(actions),
            failed,
            total_bytes,
            trigger,
            elapsed_ms,
        )


class BulkDeliveryAdapter:
    """Streams documents into the bulk API and reports outcomes as events.

    State machine:
        UNINITIALIZED -> ACTIVE -> [RECONNECTING -> ACTIVE]* -> CLOSED
    """

    def __init__(
        self,
        client,
        resolver: IndexNameResolver,
        events: EventEmitter,
        flush_bytes: int = 1000,
        flush_interval: int = 30000,
        op_type: str = "create",
        diagnostic: EventEmitter | None = None,
    ):
        if op_type not in OP_TYPES:
            raise ValueError(f"op_type must be one of {OP_TYPES}, got {op_type!r}")

        self._client = client
        self._resolver = resolver
        self._events = events
        self._flush_bytes = flush_bytes
        self._flush_interval = flush_interval
        self._op_type = op_type
        self._stats = DeliveryStats()
        self._lock = threading.RLock()
        self._operation: BulkOperation | None = None
        self._closing = False
        self._reinitializations = 0
        self.state = AdapterState.UNINITIALIZED

        self.refresh_index = resolver.resolve()
        self.diagnostic = diagnostic if diagnostic is not None else EventEmitter()
        self.diagnostic.on("resurrect", self._on_resurrect)

    # ------------------------------------------------------------------
    # Per-document decision
    # ------------------------------------------------------------------

    def on_document(self, document: dict) -> dict:
        """Return the bulk instruction for *document*.

        The effective date is ``time`` when present, else ``@timestamp``.
        For ``create`` writes the document's ``@timestamp`` becomes that date;
        a different previous value is kept under ``@original_timestamp``.
        """
        date = document.get("time") or document.get("@timestamp")

        if self._op_type == "create" and date is not None:
            current = document.get("@timestamp")
            if current is not None and current != date:
                document[ORIGINAL_TIMESTAMP_FIELD] = current
            document["@timestamp"] = date

        return {self._op_type: {"_index": self._resolver.resolve(date)}}

    def _to_action(self, document: dict) -> dict:
        instruction = self.on_document(document)
        meta = instruction[self._op_type]
        return {"_op_type": self._op_type, "_index": meta["_index"], "_source": document}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        with self._lock:
            if self.state is not AdapterState.UNINITIALIZED:
                return
            self._operation = self._new_operation()
            self.state = AdapterState.ACTIVE
        logger.debug("Bulk adapter active (refresh index %s)", self.refresh_index)

    def reinitialize(self):
        """Replace the bulk operation with a fresh one, keeping buffered documents."""
        with self._lock:
            if self.state is AdapterState.CLOSED or self._closing:
                return
            previous = self._operation
            self.state = AdapterState.RECONNECTING
            pending = previous.detach() if previous else []

            self._operation = self._new_operation()
            self._reinitializations += 1
            self.state = AdapterState.ACTIVE

        logger.info(
            "Bulk operation reinitialized (%d buffered document(s) carried over)",
            len(pending),
        )
        self._operation.extend(pending)

    def _new_operation(self) -> BulkOperation:
        operation = BulkOperation(
            self._client,
            self._events,
            self._stats,
            on_transport_error=self._handle_transport_error,
            flush_bytes=self._flush_bytes,
            flush_interval_ms=self._flush_interval,
        )
        operation.start()
        return operation

    def submit(self, document: dict):
        """Queue one document for delivery. Never raises."""
        if self.state is AdapterState.UNINITIALIZED:
            self.start()

        try:
            action = self._to_action(document)
        except Exception as exc:
            logger.warning("Could not build bulk action: %s", exc)
            self._events.emit("insert_error", DroppedDocumentError(document, reason=str(exc)))
            return
        size = _estimate_size(action)

        while True:
            with self._lock:
                operation = self._operation
                closed = self.state is AdapterState.CLOSED or self._closing
            if closed or operation is None:
                logger.warning("Adapter closed, dropping document")
                self._events.emit(
                    "insert_error", DroppedDocumentError(document, reason="Adapter closed")
                )
                return
            if operation.add(action, size):
                return

    def close(self):
        """Flush everything, refresh the completion index and report statistics."""
        with self._lock:
            if self.state is AdapterState.CLOSED or self._closing:
                return
            self._closing = True
            operation = self._operation

        if operation is not None:
            operation.close()

        with self._lock:
            self.state = AdapterState.CLOSED

        stats = self._stats.snapshot()
        if stats["successful"]:
            self._refresh()
        self._events.emit("insert", stats)

        self._resurrect_pool()

    def _refresh(self):
        try:
            self._client.indices.refresh(index=self.refresh_index, ignore_unavailable=True)
        except (TransportError, ApiError) as exc:
            logger.warning("Refresh of %s failed: %s", self.refresh_index, exc)
            self._events.emit("error", exc)

    # ------------------------------------------------------------------
    # Connection recovery
    # ------------------------------------------------------------------

    def _handle_transport_error(self, exc: Exception):
        self._events.emit("error", exc)
        if self._closing:
            return
        if self._resurrect_pool():
            self.diagnostic.emit("resurrect", {"name": "elasticsearch-py", "error": exc})

    def _on_resurrect(self, meta=None):
        self.reinitialize()

    def _resurrect_pool(self) -> bool:
        """Force dead nodes back into rotation. False when the pool can't."""
        node_pool = getattr(getattr(self._client, "transport", None), "node_pool", None)
        resurrect = getattr(node_pool, "resurrect", None)
        if not callable(resurrect):
            return False
        try:
            resurrect(force=True)
        except Exception as exc:
            logger.debug("Node pool resurrection failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def stats(self) -> DeliveryStats:
        return self._stats

    @property
    def operation(self) -> BulkOperation | None:
        with self._lock:
            return self._operation

    @property
    def reinitializations(self) -> int:
        with self._lock:
            return self._reinitializations
