import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from bastion.models.Security_config import BruteForceConfig, RateLimitConfig
from bastion.services.security.counters import (
    BruteForceCounter,
    RateLimitCounter,
    backoff_wait_ms,
    ms_to_retry_after,
)


def test_backoff_doubles_until_capped():
    waits = [backoff_wait_ms(k, 5_000, 60_000) for k in range(1, 8)]
    assert waits == [5_000, 10_000, 20_000, 40_000, 60_000, 60_000, 60_000]


def test_backoff_is_monotonic_and_bounded():
    previous = 0
    for attempts in range(1, 200):
        wait = backoff_wait_ms(attempts, 300_000, 3_600_000)
        assert previous <= wait <= 3_600_000
        previous = wait


def test_backoff_handles_zero_attempts():
    assert backoff_wait_ms(0, 5_000, 60_000) == 5_000


@pytest.mark.parametrize(
    "ttl_ms, expected",
    [(1, 1), (1_000, 1), (1_001, 2), (0, 0), (-1, 60), (-2, 60)],
)
def test_retry_after_rounds_up_and_falls_back(ttl_ms, expected):
    assert ms_to_retry_after(ttl_ms, 60_000) == expected


class TestRateLimitCounter:
    def test_counts_within_a_single_window(self, store):
        counter = RateLimitCounter(store, RateLimitConfig(window_ms=60_000, max=3))
        counts = [counter.hit("ip:1.2.3.4")[0] for _ in range(4)]
        assert counts == [1, 2, 3, 4]

    def test_retry_after_never_exceeds_window(self, store):
        counter = RateLimitCounter(store, RateLimitConfig(window_ms=60_000, max=3))
        _, retry_after = counter.hit("ip:1.2.3.4")
        assert 0 < retry_after <= 60

    def test_identities_are_independent(self, store):
        counter = RateLimitCounter(store, RateLimitConfig(window_ms=60_000, max=3))
        counter.hit("ip:1.2.3.4")
        counter.hit("ip:1.2.3.4")
        assert counter.hit("user:42")[0] == 1

    def test_release_gives_back_one_slot(self, store):
        counter = RateLimitCounter(store, RateLimitConfig(window_ms=60_000, max=3))
        counter.hit("ip:1.2.3.4")
        counter.hit("ip:1.2.3.4")
        counter.release("ip:1.2.3.4")
        assert counter.hit("ip:1.2.3.4")[0] == 2

    def test_key_lives_in_rate_limit_namespace(self, store):
        counter = RateLimitCounter(store, RateLimitConfig())
        assert counter.key("ip:1.2.3.4") == "rate-limit:ip:1.2.3.4"


class TestBruteForceCounter:
    def _counter(self, store, **overrides):
        params = dict(free_retries=2, min_wait_ms=5_000, max_wait_ms=60_000, lifetime_ms=86_400_000)
        params.update(overrides)
        return BruteForceCounter(store, BruteForceConfig(**params))

    def test_failures_accumulate_per_ip_and_endpoint(self, store):
        counter = self._counter(store)
        for _ in range(3):
            counter.record_failure("1.2.3.4", "/login")
        counter.record_failure("1.2.3.4", "/other")

        assert counter.status("1.2.3.4", "/login")[0] == 3
        assert counter.status("1.2.3.4", "/other")[0] == 1
        assert counter.status("5.6.7.8", "/login")[0] == 0

    def test_ttl_follows_backoff(self, store, redis_client):
        counter = self._counter(store)
        _, ttl_first = counter.record_failure("1.2.3.4", "/login")
        _, ttl_second = counter.record_failure("1.2.3.4", "/login")
        assert ttl_first == 5_000
        assert ttl_second == 10_000
        assert 0 < redis_client.pttl(counter.key("1.2.3.4", "/login")) <= 10_000

    def test_status_reports_remaining_wait(self, store):
        counter = self._counter(store)
        counter.record_failure("1.2.3.4", "/login")
        counter.record_failure("1.2.3.4", "/login")
        attempts, retry_after = counter.status("1.2.3.4", "/login")
        assert attempts == 2
        assert 0 < retry_after <= 10

    def test_lifetime_is_a_hard_ceiling_on_counter_age(self, store):
        counter = self._counter(store, lifetime_ms=30_000)
        created_at = 1_000_000
        # backoff de 40s para a 4ª tentativa, mas só restam 12s de vida
        assert counter.ttl_for(4, created_at, created_at + 18_000) == 12_000
        assert counter.ttl_for(4, created_at, created_at + 31_000) == 0
        assert counter.ttl_for(1, created_at, created_at) == 5_000

    def test_created_at_is_kept_across_failures(self, store, redis_client):
        counter = self._counter(store)
        counter.record_failure("1.2.3.4", "/login")
        first = redis_client.hget(counter.key("1.2.3.4", "/login"), "created_at")
        counter.record_failure("1.2.3.4", "/login")
        assert redis_client.hget(counter.key("1.2.3.4", "/login"), "created_at") == first

    def test_counter_keeps_a_ttl_when_backoff_expiry_fails(self, store, redis_client, monkeypatch):
        def _timeout(*args, **kwargs):
            raise RedisTimeoutError("Timeout reading from socket")

        monkeypatch.setattr(redis_client, "pexpire", _timeout)
        counter = self._counter(store, lifetime_ms=3_600_000)
        for _ in range(3):
            attempts, ttl_ms = counter.record_failure("1.2.3.4", "/login")

        assert attempts == 3
        assert ttl_ms == 3_600_000
        assert 0 < redis_client.pttl(counter.key("1.2.3.4", "/login")) <= 3_600_000
        assert counter.status("1.2.3.4", "/login")[1] > 0
