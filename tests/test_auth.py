from datetime import timedelta

from shared.auth import LoginRateLimiter, create_access_token, decode_token, get_password_hash, verify_password


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_blocks_after_max_failures():
    limiter = LoginRateLimiter(max_attempts=3, window_seconds=60, clock=FakeClock())
    for _ in range(2):
        limiter.record_failure("an@example.com")
    assert not limiter.is_blocked("an@example.com")

    limiter.record_failure("an@example.com")
    assert limiter.is_blocked("an@example.com")
    assert not limiter.is_blocked("binh@example.com")


def test_failures_expire_after_window():
    clock = FakeClock()
    limiter = LoginRateLimiter(max_attempts=2, window_seconds=60, clock=clock)
    limiter.record_failure("an@example.com")
    limiter.record_failure("an@example.com")
    assert limiter.is_blocked("an@example.com")

    clock.now += 61
    assert not limiter.is_blocked("an@example.com")


def test_success_and_reset_clear_failures():
    limiter = LoginRateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
    limiter.record_failure("an@example.com")
    limiter.record_success("an@example.com")
    assert not limiter.is_blocked("an@example.com")

    limiter.record_failure("an@example.com")
    limiter.record_failure("binh@example.com")
    limiter.reset("an@example.com")
    assert not limiter.is_blocked("an@example.com")
    assert limiter.is_blocked("binh@example.com")

    limiter.reset()
    assert not limiter.is_blocked("binh@example.com")


def test_token_round_trip():
    token = create_access_token({"sub": "an@example.com", "role": "student", "user_id": "SV001"})
    payload = decode_token(token)
    assert payload["user_id"] == "SV001"
    assert payload["role"] == "student"


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "an@example.com"}, expires_delta=timedelta(minutes=-1))
    assert decode_token(token) is None


def test_password_hashing():
    hashed = get_password_hash("secret123")
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)
