from opsentry.errors import TooLateError, TransientError
from opsentry.health.abort import AbortGateway, AbortOutcome


def test_successful_abort(fake_oracle, bus, capture):
    oracle = fake_oracle()

    outcome = AbortGateway(oracle, bus).abort("op-test-cluster-upgrade", "multiple_threshold_violations_2")

    assert outcome == AbortOutcome.ABORTED
    assert oracle.abort_calls == ["multiple_threshold_violations_2"]
    assert capture.kinds() == ["AbortRequested", "AbortSucceeded"]


def test_too_late_is_not_a_failure(fake_oracle, bus, capture):
    oracle = fake_oracle(abort_error=TooLateError("409 Conflict: operation already completed"))

    outcome = AbortGateway(oracle, bus).abort("op-test-cluster-upgrade", "multiple_threshold_violations_1")

    assert outcome == AbortOutcome.TOO_LATE
    assert capture.kinds() == ["AbortRequested", "AbortTooLate"]
    assert "409" in capture.events[-1].error


def test_other_errors_fail_without_retry(fake_oracle, bus, capture):
    oracle = fake_oracle(abort_error=TransientError("connection reset"))

    outcome = AbortGateway(oracle, bus).abort("op-test-cluster-upgrade", "multiple_threshold_violations_1")

    assert outcome == AbortOutcome.FAILED
    assert len(oracle.abort_calls) == 1
    assert capture.kinds() == ["AbortRequested", "AbortFailed"]
