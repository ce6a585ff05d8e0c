"""Pipeline object — wires the normalizer, the bulk adapter and the client together."""

import logging
from typing import Callable, Iterable

from elasticsearch import Elasticsearch

from es_shipper.bulk_adapter import BulkDeliveryAdapter
from es_shipper.config import Config
from es_shipper.events import EventEmitter
from es_shipper.index_name import IndexNameResolver
from es_shipper.normalizer import LineNormalizer

logger = logging.getLogger(__name__)


def create_client(config: Config) -> Elasticsearch:
    """Build the Elasticsearch client; TLS options apply to https nodes only."""
    kwargs: dict = {"basic_auth": (config.username, config.password)}

    if config.node.lower().startswith("https"):
        kwargs["verify_certs"] = config.reject_unauthorized
        kwargs["ssl_show_warn"] = config.reject_unauthorized
        if config.ca_fingerprint:
            kwargs["ssl_assert_fingerprint"] = config.ca_fingerprint

    return Elasticsearch(config.node, **kwargs)


class ElasticsearchShipper:
    """Reads raw lines, normalizes them and hands documents to the adapter.

    Subscribe with ``on(event, handler)``:

    - ``unknown(anomaly)``: a rejected input line
    - ``insert_error(error)``: a document dropped by the cluster
    - ``error(exc)``: a failed bulk request or refresh
    - ``insert(stats)``: aggregate delivery statistics on close
    """

    def __init__(
        self,
        config: Config,
        client=None,
        index: str | Callable[[str], str] | None = None,
        raw_output=None,
    ):
        self._config = config
        self._client = client if client is not None else create_client(config)
        self._events = EventEmitter()
        self._normalizer = LineNormalizer(
            self._events,
            additional_fields=config.additional_fields,
            raw_output=raw_output,
        )
        self._resolver = IndexNameResolver(index if index is not None else config.index)
        self._adapter = BulkDeliveryAdapter(
            self._client,
            self._resolver,
            self._events,
            flush_bytes=config.flush_bytes,
            flush_interval=config.flush_interval,
            op_type=config.op_type,
        )
        self._adapter.start()

    def on(self, event: str, handler):
        self._events.on(event, handler)

    def write(self, line: str):
        """Process one raw line. Never raises for bad input."""
        document = self._normalizer.process(line)
        if document is not None:
            self._adapter.submit(document)

    def run(self, stream: Iterable[str]):
        """Consume *stream* line by line until it ends, then close."""
        try:
            for line in stream:
                self.write(line)
        finally:
            self.close()

    def close(self):
        self._adapter.close()

    @property
    def client(self):
        return self._client

    @property
    def adapter(self) -> BulkDeliveryAdapter:
        return self._adapter

    @property
    def normalizer(self) -> LineNormalizer:
        return self._normalizer
