"""Tests for the process entry point."""

import io
import logging
from unittest.mock import MagicMock, patch

from es_shipper import main as entrypoint
from es_shipper.bulk_adapter import DroppedDocumentError

STREAMING_BULK = "es_shipper.bulk_adapter.helpers.streaming_bulk"


def test_main_pipes_stdin(monkeypatch, capsys, caplog, bulk_results):
    for name in ("LOG_ES_FLUSH_BYTES", "LOG_ES_FLUSH_INTERVAL", "LOG_ES_OP_TYPE", "LOG_ES_INDEX"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "sys.stdin",
        io.StringIO('{"msg":"one"}\nbroken line\nfalse\n{"msg":"two"}\n'),
    )
    caplog.set_level(logging.INFO, logger="es_shipper")

    with patch("es_shipper.shipper.create_client", return_value=MagicMock()), \
            patch.object(entrypoint.signal, "signal"), \
            patch(STREAMING_BULK, side_effect=bulk_results()) as bulk:
        assert entrypoint.main(["--flush-interval", "0"]) == 0

    assert len(bulk.call_args.args[1]) == 2
    assert capsys.readouterr().out == "broken line\n"
    assert "Delivered 2 document(s), 0 failed" in caplog.text
    assert "Boolean value ignored" in caplog.text
    assert "changeme" not in caplog.text


def test_reporters_format_events(caplog):
    caplog.set_level(logging.INFO, logger="es_shipper")
    drop = DroppedDocumentError({"message": "dup"}, {"create": {"status": 409}})

    entrypoint.report_drop(drop)
    entrypoint.report_error(RuntimeError("cluster unreachable"))

    assert "Elasticsearch server error: Dropped document (status=409)" in caplog.text
    assert '"message": "dup"' in caplog.text
    assert "cluster unreachable" in caplog.text


def test_report_insert_includes_send_times(caplog):
    caplog.set_level(logging.INFO, logger="es_shipper")
    stats = {
        "successful": 5,
        "failed": 1,
        "flushes": 2,
        "avg_send_time_ms": 12.5,
        "p95_send_time_ms": 19.34,
    }

    entrypoint.report_insert(stats)

    assert "Delivered 5 document(s), 1 failed, in 2 flush(es)" in caplog.text
    assert "avg send 12.5ms, p95 19.3ms" in caplog.text


def test_main_survives_undecodable_stdin_bytes(monkeypatch, capsys, caplog, bulk_results):
    for name in ("LOG_ES_FLUSH_BYTES", "LOG_ES_FLUSH_INTERVAL", "LOG_ES_OP_TYPE", "LOG_ES_INDEX"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "sys.stdin",
        io.TextIOWrapper(io.BytesIO(b'\xff\xfe\n{"msg":"after"}\n'), encoding="utf-8"),
    )
    caplog.set_level(logging.INFO, logger="es_shipper")

    with patch("es_shipper.shipper.create_client", return_value=MagicMock()), \
            patch.object(entrypoint.signal, "signal"), \
            patch(STREAMING_BULK, side_effect=bulk_results()) as bulk:
        assert entrypoint.main(["--flush-interval", "0"]) == 0

    shipped = bulk.call_args.args[1]
    assert [action["_source"]["message"] for action in shipped] == ["after"]
    assert capsys.readouterr().out == "\ufffd\ufffd\n"
    assert "Error: invalid JSON" in caplog.text
