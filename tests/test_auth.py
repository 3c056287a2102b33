from services.rate_limiter import FixedWindowRateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_rate_limiter_window_expires():
    clock = _Clock()
    limiter = FixedWindowRateLimiter(max_hits=2, window_seconds=60, clock=clock)

    limiter.hit("1.2.3.4")
    assert limiter.is_limited("1.2.3.4") is False
    limiter.hit("1.2.3.4")
    assert limiter.is_limited("1.2.3.4") is True
    assert limiter.is_limited("5.6.7.8") is False

    clock.now = 61
    assert limiter.is_limited("1.2.3.4") is False
    assert limiter.hit("1.2.3.4") == 1


def test_rate_limiter_reset():
    limiter = FixedWindowRateLimiter(max_hits=1)
    limiter.hit("a")
    limiter.reset("a")
    assert limiter.is_limited("a") is False


def test_login_success(client):
    resp = client.post("/auth/login", json={"username": "admin", "password": "s3cret"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "user": {"username": "admin", "role": "admin"}}


def test_login_validation(client):
    assert client.post("/auth/login", json={"username": "", "password": "x"}).status_code == 400
    assert client.post("/auth/login", json={"username": "a" * 51, "password": "x"}).status_code == 400


def test_login_lockout_after_failures(client):
    headers = {"X-Forwarded-For": "10.0.0.9, 10.0.0.1"}
    for _ in range(3):
        resp = client.post("/auth/login", json={"username": "admin", "password": "wrong"}, headers=headers)
        assert resp.status_code == 401

    locked = client.post("/auth/login", json={"username": "admin", "password": "s3cret"}, headers=headers)
    assert locked.status_code == 429
    assert locked.json()["success"] is False

    other = client.post("/auth/login", json={"username": "admin", "password": "s3cret"}, headers={"X-Forwarded-For": "10.0.0.10"})
    assert other.status_code == 200


def test_rate_limiter_sweeps_expired_windows():
    clock = _Clock()
    limiter = FixedWindowRateLimiter(max_hits=5, window_seconds=60, clock=clock, sweep_threshold=100)

    for i in range(1000):
        limiter.hit(f"client-{i}")
    assert limiter.tracked == 1000

    clock.now = 61
    limiter.hit("192.168.1.1")

    assert limiter.tracked == 1


def test_rate_limiter_keeps_live_windows_when_sweeping():
    clock = _Clock()
    limiter = FixedWindowRateLimiter(max_hits=2, window_seconds=60, clock=clock, sweep_threshold=3)
    limiter.hit("old")
    clock.now = 30
    limiter.hit("fresh")
    limiter.hit("fresh")
    limiter.hit("other")

    clock.now = 70
    limiter.hit("new")

    assert limiter.tracked == 3
    assert limiter.is_limited("fresh") is True
    assert limiter.is_limited("old") is False
