import json
import logging

import pytest

from ggdb.obs import logging as obs_logging


def _format(message: str, **extra) -> dict:
    record = logging.LogRecord("ggdb.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(obs_logging.JSONLogFormatter().format(record))


def test_bound_context_appears_on_log_lines():
    with obs_logging.bound(request_id="req-1", game_id="g7"):
        payload = _format("activity_stats_drift_corrected")
        assert obs_logging.current_request_id() == "req-1"
    assert payload["request_id"] == "req-1"
    assert payload["game_id"] == "g7"
    assert "user_id" not in payload
    assert obs_logging.current_request_id() is None


def test_sensitive_extra_fields_are_redacted():
    payload = _format("login", access_token="abc", counter="likesCount")
    assert payload["access_token"] == "[redacted]"
    assert payload["counter"] == "likesCount"


def test_long_values_are_truncated():
    payload = _format("big", game_ids=[str(i) for i in range(50)])
    assert len(payload["game_ids"]) == 11
    assert payload["game_ids"][-1] == "…"


def test_unknown_context_field_rejected():
    with pytest.raises(KeyError):
        obs_logging.bind_context(campus_id="x")
