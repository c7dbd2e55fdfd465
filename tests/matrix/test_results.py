"""Tests for pairbench.matrix.results — verdicts, matrix and sweep summary."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from pairbench.core.errors import MatrixError
from pairbench.matrix.results import (
    FailureDetail,
    FailureKind,
    OverallStatus,
    ReadinessKind,
    ReadinessOutcome,
    ResultMatrix,
    RunVerdict,
    SweepResult,
)

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def _verdict(client="A", validator="V1", *, success=True, error=None, exit_code=0, seconds=1.5):
    return RunVerdict(
        client=client,
        validator=validator,
        start=T0,
        end=T0 + timedelta(seconds=seconds),
        success=success,
        error=error,
        exit_code=exit_code,
    )


# ===========================================================================
# RunVerdict
# ===========================================================================


class TestRunVerdict:
    def test_passed(self):
        v = _verdict()
        assert v.passed
        assert v.duration_seconds == 1.5

    def test_nonzero_exit_is_failure_without_error(self):
        v = _verdict(success=False, exit_code=1)
        assert not v.passed
        assert v.error is None

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError, match="end precedes start"):
            RunVerdict(client="A", validator="V1", start=T0, end=T0 - timedelta(seconds=1))

    def test_equal_start_end_allowed(self):
        v = RunVerdict(client="A", validator="V1", start=T0, end=T0)
        assert v.duration_seconds == 0.0

    def test_success_with_error_rejected(self):
        error = FailureDetail(kind=FailureKind.PROBE, message="x")
        with pytest.raises(ValidationError):
            _verdict(success=True, error=error)

    def test_frozen(self):
        v = _verdict()
        with pytest.raises(ValidationError):
            v.success = False

    def test_json_roundtrip_fields(self):
        error = FailureDetail(kind=FailureKind.TERMINATED, message="terminated unexpectedly", role="client")
        data = json.loads(_verdict(success=False, error=error, exit_code=None).model_dump_json())
        assert data["error"] == {"kind": "terminated", "message": "terminated unexpectedly", "role": "client"}
        assert data["exit_code"] is None


class TestFailureDetail:
    def test_str_with_role(self):
        detail = FailureDetail(kind=FailureKind.TIMEOUT, message="after 5s", role="validator")
        assert str(detail) == "validator timeout: after 5s"

    def test_str_without_role(self):
        assert str(FailureDetail(kind=FailureKind.INTERNAL, message="boom")) == "internal: boom"


class TestReadinessOutcome:
    def test_ready(self):
        assert ReadinessOutcome(kind=ReadinessKind.READY, ip_address="10.0.0.2").ready

    @pytest.mark.parametrize(
        "kind", [ReadinessKind.PROCESS_EXITED, ReadinessKind.PROBE_ERROR, ReadinessKind.TIMEOUT]
    )
    def test_not_ready(self, kind):
        assert not ReadinessOutcome(kind=kind).ready


# ===========================================================================
# ResultMatrix
# ===========================================================================


class TestResultMatrix:
    def test_empty_matrix(self):
        m = ResultMatrix(["A", "B"], ["V1", "V2"])
        assert len(m) == 2
        assert m.clients == ["A", "B"]
        assert m.validators == ["V1", "V2"]
        assert not m.is_complete
        assert m.missing() == [("A", "V1"), ("B", "V1"), ("A", "V2"), ("B", "V2")]

    def test_record_and_lookup(self):
        m = ResultMatrix(["A"], ["V1"])
        v = _verdict()
        m.record(v)
        assert m.get("A", "V1") is v
        assert m["A"] == {"V1": v}
        assert ("A", "V1") in m
        assert "A" in m
        assert ("A", "V2") not in m
        assert m.is_complete

    def test_duplicate_write_rejected(self):
        m = ResultMatrix(["A"], ["V1"])
        m.record(_verdict())
        with pytest.raises(MatrixError, match="already recorded"):
            m.record(_verdict(success=False, exit_code=1))
        assert m.get("A", "V1").passed

    def test_unknown_client_rejected(self):
        m = ResultMatrix(["A"], ["V1"])
        with pytest.raises(MatrixError, match="Unknown client"):
            m.record(_verdict(client="Z"))

    def test_unknown_validator_rejected(self):
        m = ResultMatrix(["A"], ["V1"])
        with pytest.raises(MatrixError, match="Unknown validator"):
            m.record(_verdict(validator="V9"))

    def test_sealed_rejects_writes(self):
        m = ResultMatrix(["A"], ["V1"])
        m.seal()
        assert m.sealed
        with pytest.raises(MatrixError, match="sealed"):
            m.record(_verdict())

    def test_counts(self):
        m = ResultMatrix(["A", "B"], ["V1"])
        m.record(_verdict("A"))
        m.record(_verdict("B", success=False, exit_code=137))
        assert m.passed_count == 1
        assert m.failed_count == 1
        assert len(list(m.verdicts())) == 2
        assert list(m) == ["A", "B"]

    def test_as_dict_is_a_copy(self):
        m = ResultMatrix(["A"], ["V1"])
        m.record(_verdict())
        d = m.as_dict()
        d["A"].clear()
        assert m.get("A", "V1") is not None

    def test_duplicate_identifiers_collapse(self):
        m = ResultMatrix(["A", "A"], ["V1"])
        assert m.clients == ["A"]


# ===========================================================================
# SweepResult
# ===========================================================================


class TestSweepResult:
    def _result(self, *verdicts):
        m = ResultMatrix({v.client for v in verdicts}, {v.validator for v in verdicts})
        for v in verdicts:
            m.record(v)
        return SweepResult(run_id="run1", results=m.as_dict())

    def test_all_passed(self):
        r = self._result(_verdict("A"), _verdict("B"))
        r.mark_complete()
        assert r.overall_status == OverallStatus.PASSED
        assert r.summary.startswith("2/2 pairs passed (2 clients)")
        assert r.completed_at is not None
        assert r.duration_seconds >= 0

    def test_partial(self):
        r = self._result(_verdict("A"), _verdict("B", success=False, exit_code=1))
        r.mark_complete()
        assert r.overall_status == OverallStatus.PARTIAL

    def test_all_failed(self):
        r = self._result(_verdict("A", success=False, exit_code=1))
        r.mark_complete()
        assert r.overall_status == OverallStatus.FAILED

    def test_error(self):
        r = SweepResult(run_id="run1", error="No clients match pattern 'x'")
        r.mark_complete()
        assert r.overall_status == OverallStatus.ERROR
        assert r.summary == "sweep aborted: No clients match pattern 'x'"

    def test_empty_is_skipped(self):
        r = SweepResult(run_id="run1")
        r.mark_complete()
        assert r.overall_status == OverallStatus.SKIPPED

    def test_pending_until_complete(self):
        assert SweepResult(run_id="run1").overall_status == OverallStatus.PENDING

    def test_verdicts(self):
        r = self._result(_verdict("A"), _verdict("B"))
        assert {v.client for v in r.verdicts()} == {"A", "B"}
