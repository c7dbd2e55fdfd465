"""Tests for pairbench.core.timeout — Deadline and TimeoutExpired."""

from __future__ import annotations

import time

from pairbench.core.timeout import Deadline, TimeoutExpired


class TestTimeoutExpired:
    def test_is_builtin_timeout_error(self):
        assert issubclass(TimeoutExpired, TimeoutError)

    def test_message(self):
        exc = TimeoutExpired(timeout=5.0, elapsed=5.25, operation="readiness")
        assert str(exc) == "Operation 'readiness' timed out after 5.0s (ran for 5.25s)"
        assert exc.timeout == 5.0
        assert exc.operation == "readiness"

    def test_message_without_elapsed(self):
        assert str(TimeoutExpired(2.0)) == "Operation 'operation' timed out after 2.0s"


class TestDeadline:
    def test_unbounded(self):
        deadline = Deadline.start(None)
        assert deadline.remaining() is None
        assert not deadline.is_expired()

    def test_bounded_not_expired(self):
        deadline = Deadline.start(60.0, operation="validator.wait")
        assert 0 < deadline.remaining() <= 60.0
        assert not deadline.is_expired()
        assert deadline.operation == "validator.wait"

    def test_zero_is_expired(self):
        assert Deadline.start(0.0).is_expired()

    def test_expires(self):
        deadline = Deadline.start(0.01)
        time.sleep(0.02)
        assert deadline.is_expired()
        assert deadline.remaining() < 0
        assert deadline.elapsed >= 0.01
