from unittest.mock import MagicMock, patch

from wa_bridge.audit import AuditLogger, AuditRecord, PostgresAuditSink


class FailingSink:
    def write(self, record):
        raise ConnectionError("database unavailable")


class TestAuditRecord:
    def test_success_defaults_to_true(self):
        assert AuditRecord.create("send", {"to": "+1"}).success is True

    def test_explicit_failure(self):
        assert AuditRecord.create("inbound", {"success": False}).success is False


class TestAuditLogger:
    def test_inline_write(self, sink):
        AuditLogger(sink, background=False).log("inbound", {"messageId": "m1", "success": True})

        assert [r.event_type for r in sink.records] == ["inbound"]

    def test_background_write_is_flushed_on_close(self, sink):
        audit = AuditLogger(sink)
        for i in range(5):
            audit.log("send", {"messageId": str(i)})
        audit.close()

        assert [r.metadata["messageId"] for r in sink.records] == ["0", "1", "2", "3", "4"]

    def test_sink_failure_is_swallowed(self):
        audit = AuditLogger(FailingSink(), background=False)

        audit.log("inbound", {"success": True})

    def test_disabled_without_sink(self):
        audit = AuditLogger(None)

        assert audit.enabled is False
        audit.log("inbound", {"success": True})

    def test_log_after_close_is_dropped(self, sink):
        audit = AuditLogger(sink)
        audit.close()

        audit.log("inbound", {"success": True})

        assert sink.records == []


class TestPostgresAuditSink:
    def test_inserts_into_message_events(self):
        conn = MagicMock()
        conn.closed = False
        cursor = conn.cursor.return_value

        with patch("wa_bridge.audit.psycopg2.connect", return_value=conn) as connect:
            sink = PostgresAuditSink("postgresql://audit@localhost/crm")
            sink.write(AuditRecord.create("send", {"messageId": "m1"}))

        connect.assert_called_once_with("postgresql://audit@localhost/crm")
        sql, params = cursor.execute.call_args.args
        assert "INSERT INTO message_events" in sql
        assert params[0] == "send"
        assert params[2] is True
        conn.commit.assert_called_once()

    def test_rolls_back_on_error(self):
        conn = MagicMock()
        conn.closed = False
        conn.cursor.return_value.execute.side_effect = RuntimeError("constraint violated")

        with patch("wa_bridge.audit.psycopg2.connect", return_value=conn):
            sink = PostgresAuditSink("postgresql://audit@localhost/crm")
            AuditLogger(sink, background=False).log("send", {"messageId": "m1"})

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
