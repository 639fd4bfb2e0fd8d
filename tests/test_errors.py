# [TEMPLATE: CUI // SP-CTI]
"""Tests for patterngate.resilience.errors: structured exception hierarchy."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from patterngate.resilience.errors import (
    ConfigurationError,
    CorruptRecordError,
    PatternGateError,
    PermanentError,
    StoreUnavailableError,
    TransientError,
)


class TestPatternGateError:
    """Tests for the base exception."""

    def test_message_via_str(self):
        assert str(PatternGateError("boom")) == "boom"

    def test_defaults(self):
        err = PatternGateError("boom")
        assert err.component == ""
        assert err.retryable is False

    def test_to_dict(self):
        data = PatternGateError("boom", component="gate").to_dict()
        assert data == {"error": "boom", "type": "PatternGateError",
                        "component": "gate", "retryable": False}


class TestHierarchy:
    """Retryability follows the transient/permanent split."""

    def test_transient_is_retryable(self):
        assert TransientError("x").retryable is True

    def test_permanent_is_not_retryable(self):
        assert PermanentError("x").retryable is False

    def test_store_unavailable(self):
        err = StoreUnavailableError()
        assert isinstance(err, TransientError)
        assert err.component == "store"
        assert err.retryable is True
        assert "unavailable" in str(err)

    def test_corrupt_record_keeps_id(self):
        err = CorruptRecordError("bad row", record_id="abc")
        assert isinstance(err, PermanentError)
        assert err.record_id == "abc"
        assert err.retryable is False

    def test_configuration_error_keeps_key(self):
        err = ConfigurationError("bad ttl", config_key="enforcement.session_ttl_seconds")
        assert err.component == "config"
        assert err.config_key == "enforcement.session_ttl_seconds"

    @pytest.mark.parametrize("cls", [TransientError, PermanentError, StoreUnavailableError,
                                     CorruptRecordError, ConfigurationError])
    def test_all_catchable_as_base(self, cls):
        with pytest.raises(PatternGateError):
            raise cls("x")
