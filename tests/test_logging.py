import json
import logging

from observability.logging import ColoredFormatter, JSONFormatter, get_structured_logger, record_context


def make_record(message="Answered question", **extra):
    record = logging.LogRecord("siteqa.decisions", logging.INFO, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_context_prefix_is_stripped():
    record = make_record(ctx_sid="abc", ctx_decision="generated", plain="x")
    assert record_context(record) == {"sid": "abc", "decision": "generated", "plain": "x"}


def test_json_formatter_merges_context():
    line = JSONFormatter("siteqa").format(make_record(ctx_sid="abc"))
    entry = json.loads(line)
    assert entry["msg"] == "Answered question"
    assert entry["service"] == "siteqa"
    assert entry["level"] == "INFO"
    assert entry["sid"] == "abc"


def test_colored_formatter_without_colors():
    line = ColoredFormatter(use_colors=False).format(make_record(ctx_decision="fallback"))
    assert "INFO" in line
    assert "siteqa.decisions: Answered question" in line
    assert line.endswith("[decision=fallback]")
    assert "\033[" not in line


def test_structured_logger_binds_context(caplog):
    log = get_structured_logger("siteqa.test", component="resolver").bind(sid="abc")

    with caplog.at_level(logging.INFO, logger="siteqa.test"):
        log.info("Answered", decision="generated")

    record = caplog.records[-1]
    assert record.ctx_component == "resolver"
    assert record.ctx_sid == "abc"
    assert record.ctx_decision == "generated"
