#!/usr/bin/env python3
"""es-shipper — pipe NDJSON logs from stdin into Elasticsearch."""

import io
import json
import logging
import signal
import sys

from es_shipper.config import load_config
from es_shipper.shipper import ElasticsearchShipper

logger = logging.getLogger("es_shipper")


def report_anomaly(anomaly):
    logger.error("Elasticsearch client json error in line:\n%s\nError: %s", anomaly.line, anomaly.reason)


def report_error(error):
    logger.error("Elasticsearch client error: %s", error)


def report_drop(error):
    logger.error(
        "Elasticsearch server error: %s (status=%s) document=%s",
        error,
        error.status,
        json.dumps(error.document, default=str),
    )


def report_insert(stats):
    logger.info(
        "Delivered %d document(s), %d failed, in %d flush(es) (avg send %.1fms, p95 %.1fms)",
        stats["successful"],
        stats["failed"],
        stats["flushes"],
        stats["avg_send_time_ms"],
        stats["p95_send_time_ms"],
    )


def _tolerant_stdin():
    """stdin as UTF-8 with undecodable bytes replaced, so a bad line can't end the stream."""
    if isinstance(sys.stdin, io.TextIOWrapper):
        sys.stdin.reconfigure(encoding="utf-8", errors="replace")
    return sys.stdin


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv: list[str] | None = None) -> int:
    config = load_config(argv)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger.info("Options: %s", config.redacted())

    # SIGTERM unblocks the stdin read the same way Ctrl+C does.
    signal.signal(signal.SIGTERM, _raise_interrupt)

    shipper = ElasticsearchShipper(config)
    shipper.on("unknown", report_anomaly)
    shipper.on("error", report_error)
    shipper.on("insert_error", report_drop)
    shipper.on("insert", report_insert)

    logger.info("Logging to elasticsearch at %s", config.node)
    logger.info("Any line showing up on stdout was not logged to elasticsearch.")

    try:
        shipper.run(_tolerant_stdin())
    except KeyboardInterrupt:
        logger.info("Interrupted")

    logger.info(
        "Stopped: %d document(s) normalized, anomalies=%s",
        shipper.normalizer.document_count,
        shipper.normalizer.anomaly_counts,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
