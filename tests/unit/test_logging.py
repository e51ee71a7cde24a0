import json
import logging

from bgcheck_compliance.shared.infrastructure.logging import CustomJsonFormatter, log_latency


def _format(**extra):
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
    record = logging.LogRecord("compliance", logging.INFO, __file__, 1, "Notification sent", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_json_fields_and_redaction():
    payload = _format(
        correlation_id="corr-1",
        entity_id="check-1",
        webhook_url="https://hooks.example.test/secret-path",
        auth_token="abc",
    )

    assert payload["message"] == "Notification sent"
    assert payload["correlation_id"] == "corr-1"
    assert payload["environment"] == "test"
    assert payload["entity_id"] == "check-1"
    assert payload["webhook_url"] == "***REDACTED***"
    assert payload["auth_token"] == "***REDACTED***"
    assert "timestamp" in payload


def test_log_latency_reports_operation(caplog):
    logger = logging.getLogger("bgcheck_compliance.tests")

    with caplog.at_level(logging.INFO, logger="bgcheck_compliance.tests"):
        with log_latency(logger, "compliance_sweep", entities=3):
            pass

    [record] = caplog.records
    assert record.getMessage() == "compliance_sweep completed"
    assert record.operation == "compliance_sweep"
    assert record.entities == 3
    assert record.latency_ms >= 0
