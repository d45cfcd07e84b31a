from types import SimpleNamespace

from app.core.config import get_settings
from app.utils.rate_limit import SlidingWindowRateLimiter, get_client_ip


def _clock(monkeypatch, start=1000.0):
    t = {"now": start}
    monkeypatch.setattr("app.utils.rate_limit.time.monotonic", lambda: t["now"])
    return t


def test_rate_limiter_blocks_within_window(monkeypatch):
    t = _clock(monkeypatch)
    rl = SlidingWindowRateLimiter()

    assert rl.allow("ip:1", limit=2, window_seconds=60) == (True, 1)
    assert rl.allow("ip:1", limit=2, window_seconds=60) == (True, 2)
    assert rl.allow("ip:1", limit=2, window_seconds=60) == (False, 2)
    assert rl.allow("ip:2", limit=2, window_seconds=60)[0] is True

    t["now"] += 61
    assert rl.allow("ip:1", limit=2, window_seconds=60) == (True, 1)


def test_rate_limiter_prunes_stale_keys_on_interval(monkeypatch):
    t = _clock(monkeypatch)
    rl = SlidingWindowRateLimiter(max_keys=10_000, prune_every_seconds=1)

    for i in range(200):
        ok, _ = rl.allow(f"k:{i}", limit=1, window_seconds=60)
        assert ok is True
    assert rl.tracked_keys() == 200

    # Past the window and the prune interval: a new hit sweeps the old keys.
    t["now"] += 120
    assert rl.allow("k:new", limit=1, window_seconds=60)[0] is True
    assert rl.tracked_keys() == 1
    assert rl.allow("k:0", limit=1, window_seconds=60)[0] is True


def test_non_positive_limit_disables_limiting():
    rl = SlidingWindowRateLimiter()
    for _ in range(5):
        assert rl.allow("k", limit=0, window_seconds=60) == (True, 0)
    assert rl.tracked_keys() == 0


def _request(peer_ip, **headers):
    return SimpleNamespace(headers=headers, client=SimpleNamespace(host=peer_ip))


def test_forwarded_headers_ignored_from_untrusted_peer(monkeypatch):
    monkeypatch.setenv("TRUSTED_PROXY_CIDRS", "10.0.0.0/8")
    get_settings.cache_clear()

    req = _request("198.51.100.15", **{"x-forwarded-for": "203.0.113.9", "x-real-ip": "203.0.113.9"})
    assert get_client_ip(req) == "198.51.100.15"


def test_forwarded_headers_used_behind_trusted_proxy(monkeypatch):
    monkeypatch.setenv("TRUSTED_PROXY_CIDRS", "10.0.0.0/8, 127.0.0.1")
    get_settings.cache_clear()

    assert get_client_ip(_request("10.1.2.3", **{"x-real-ip": " 203.0.113.9 "})) == "203.0.113.9"
    # Spoofed left-hand entries are skipped in favour of what our proxy appended.
    assert get_client_ip(_request("10.1.2.3", **{"x-forwarded-for": "1.1.1.1, 203.0.113.7"})) == "203.0.113.7"
    assert get_client_ip(_request("127.0.0.1")) == "127.0.0.1"
