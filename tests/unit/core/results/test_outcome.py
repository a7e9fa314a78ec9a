"""Tests for RequestOutcome — the success/failure result contract."""

from __future__ import annotations

import pytest

from sehatscan.core.results.outcome import ERROR_KINDS, OutcomeError, RequestOutcome


class TestConstruction:
    def test_ok_carries_data(self):
        outcome = RequestOutcome.ok({"a": 1}, analysis_id="abc")
        assert outcome.success
        assert outcome.data == {"a": 1}
        assert outcome.analysis_id == "abc"
        assert outcome.error is None
        assert outcome.error_kind is None

    def test_fail_carries_error(self):
        outcome = RequestOutcome.fail("File is empty", "validation")
        assert not outcome.success
        assert outcome.data is None
        assert outcome.error == "File is empty"
        assert outcome.error_kind == "validation"

    def test_error_taxonomy_is_closed(self):
        assert ERROR_KINDS == {
            "validation", "auth", "network", "timeout", "rate_limit",
            "service", "not_found", "database", "unexpected",
        }

    def test_unknown_error_kind_rejected(self):
        with pytest.raises(OutcomeError):
            RequestOutcome.fail("nope", "teapot")

    def test_failure_needs_message(self):
        with pytest.raises(OutcomeError):
            RequestOutcome.fail("", "service")

    def test_success_cannot_carry_error(self):
        with pytest.raises(OutcomeError):
            RequestOutcome(success=True, data={}, error="x", error_kind="service")

    def test_failure_cannot_carry_data(self):
        with pytest.raises(OutcomeError):
            RequestOutcome(success=False, data={"a": 1}, error="x", error_kind="service")

    def test_analysis_id_and_save_warning_exclusive(self):
        with pytest.raises(OutcomeError):
            RequestOutcome.ok({}, analysis_id="abc", save_warning="not saved")


class TestToDict:
    def test_completed_shape(self):
        assert RequestOutcome.ok({"x": 1}, analysis_id="id-1").to_dict() == {
            "success": True,
            "data": {"x": 1},
            "analysisId": "id-1",
        }

    def test_degraded_shape(self):
        assert RequestOutcome.ok({"x": 1}, save_warning="not saved").to_dict() == {
            "success": True,
            "data": {"x": 1},
            "saveWarning": "not saved",
        }

    def test_failure_shape(self):
        assert RequestOutcome.fail("Service is busy", "rate_limit").to_dict() == {
            "success": False,
            "error": "Service is busy",
            "errorKind": "rate_limit",
        }
