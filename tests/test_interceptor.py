import pytest

from quoteledger.auth import AuthInterceptor
from quoteledger.errors import Status, StatusCode
from quoteledger.interceptor import LedgerGrpcInterceptor, TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_burst_one_then_immediate_second_is_denied():
    bucket = TokenBucket(burst=1, period=3600.0)
    assert bucket.check() is True
    assert bucket.check() is False


def test_interceptor_returns_err_when_bucket_empty(monkeypatch):
    monkeypatch.delenv("QUOTE_LEDGER_AUTH_TOKEN_UNUSED_FOR_RATE_LIMIT_TEST", raising=False)
    auth = AuthInterceptor.from_env_var("QUOTE_LEDGER_AUTH_TOKEN_UNUSED_FOR_RATE_LIMIT_TEST")
    interceptor = LedgerGrpcInterceptor(auth, limiter=TokenBucket(burst=1, period=3600.0))
    assert interceptor.intercept({}) == {}
    with pytest.raises(Status) as info:
        interceptor.intercept({})
    assert info.value.code == StatusCode.RESOURCE_EXHAUSTED
    assert interceptor.rate_limited == 1


def test_bucket_refills_over_time():
    clock = FakeClock()
    bucket = TokenBucket.per_second(2, clock=clock)
    assert [bucket.check(), bucket.check(), bucket.check()] == [True, True, False]
    clock.now += 0.5
    assert bucket.check() is True
    assert bucket.check() is False


def test_bucket_never_exceeds_burst():
    clock = FakeClock()
    bucket = TokenBucket(burst=2, period=1.0, clock=clock)
    clock.now += 1000.0
    results = [bucket.check() for _ in range(3)]
    assert results == [True, True, False]


def test_invalid_bucket_parameters():
    with pytest.raises(ValueError):
        TokenBucket(burst=0, period=1.0)
    with pytest.raises(ValueError):
        TokenBucket(burst=1, period=0.0)
    with pytest.raises(ValueError):
        LedgerGrpcInterceptor(AuthInterceptor(), requests_per_second=0)


def test_auth_failure_does_not_consume_token():
    interceptor = LedgerGrpcInterceptor(
        AuthInterceptor.required("token"),
        limiter=TokenBucket(burst=1, period=3600.0),
    )
    with pytest.raises(Status) as info:
        interceptor.intercept({})
    assert info.value.code == StatusCode.UNAUTHENTICATED
    metadata = {"authorization": "Bearer token"}
    assert interceptor.intercept(metadata) is metadata


def test_no_limit_allows_many():
    interceptor = LedgerGrpcInterceptor(AuthInterceptor())
    assert all(interceptor.intercept({}) == {} for _ in range(100))
    assert interceptor.rate_limited == 0