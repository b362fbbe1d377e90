import pytest

from opsentry.errors import ConflictError, TransientError
from opsentry.utils.retry import RetryError, retry


def test_retries_until_success():
    calls = {"n": 0}
    sleeps = []

    @retry(retries=3, delay=2, retry_on=(TransientError,), sleep=sleeps.append)
    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise TransientError("try again")
        return "ok"

    assert flaky() == "ok"
    assert calls["n"] == 3
    assert sleeps == [2, 2]


def test_gives_up_after_bound():
    seen = []

    @retry(retries=2, delay=0, retry_on=(TransientError,), on_retry=lambda a, e: seen.append(a), sleep=lambda _s: None)
    def broken():
        raise TransientError("down")

    with pytest.raises(RetryError) as info:
        broken()

    assert seen == [1, 2]
    assert isinstance(info.value.__cause__, TransientError)


def test_other_errors_propagate_immediately():
    calls = {"n": 0}

    @retry(retries=5, delay=0, retry_on=(TransientError,), sleep=lambda _s: None)
    def conflicting():
        calls["n"] += 1
        raise ConflictError("exists")

    with pytest.raises(ConflictError):
        conflicting()
    assert calls["n"] == 1
