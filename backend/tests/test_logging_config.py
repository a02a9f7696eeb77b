"""
Tests for structured logging and credential masking
"""
import json
import logging

import pytest

from cds_hooks.core.logging_config import (
    ContextualFormatter,
    LoggingConfig,
    SensitiveDataFilter,
)


def _record(msg, *args, **extra):
    record = logging.LogRecord("cds_hooks.test", logging.INFO, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clean_context():
    LoggingConfig.clear_context()
    yield
    LoggingConfig.clear_context()


def test_filter_masks_fhir_bearer_token():
    record = _record("Sending fhirAuthorization Bearer abc.def.ghi to %s", "allergy-check")

    SensitiveDataFilter().filter(record)

    assert "abc.def.ghi" not in record.getMessage()
    assert "Bearer ***" in record.getMessage()
    assert "allergy-check" in record.getMessage()


def test_filter_masks_string_args():
    record = _record("token payload %s", '{"access_token": "s3cret"}')

    SensitiveDataFilter().filter(record)

    assert "s3cret" not in record.getMessage()


def test_filter_disabled_leaves_message():
    record = _record("Bearer abc")

    assert SensitiveDataFilter(enabled=False).filter(record) is True
    assert record.getMessage() == "Bearer abc"


def test_json_formatter_includes_context_and_extra():
    LoggingConfig.set_context(request_id="req-1")
    LoggingConfig.set_context(method="POST")
    record = _record("Hook fired", hook_type="patient-view", card_count=2)

    payload = json.loads(ContextualFormatter().format(record))

    assert payload["message"] == "Hook fired"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "req-1"
    assert payload["method"] == "POST"
    assert payload["hook_type"] == "patient-view"
    assert payload["card_count"] == 2


def test_json_formatter_stringifies_unserialisable_extra():
    record = _record("odd", obj=object())

    payload = json.loads(ContextualFormatter().format(record))

    assert payload["obj"].startswith("<object object")


def test_clear_context():
    LoggingConfig.set_context(request_id="req-2")
    LoggingConfig.clear_context()

    payload = json.loads(ContextualFormatter().format(_record("after")))

    assert "request_id" not in payload
