import ipaddress
import time
from collections import deque
from threading import Lock
from typing import Optional

from fastapi import Request

from app.core.config import get_settings

_MAX_KEYS = 50_000
_PRUNE_EVERY_SECONDS = 60


class SlidingWindowRateLimiter:
    """In-process per-key request counter over a sliding window."""

    def __init__(self, *, max_keys: int = _MAX_KEYS, prune_every_seconds: int = _PRUNE_EVERY_SECONDS) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._max_keys = max_keys
        self._prune_every = max(1, int(prune_every_seconds))
        self._last_prune = 0.0

    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        """Record a hit for *key*; returns (allowed, hits in window)."""
        if limit <= 0 or window_seconds <= 0:
            return True, 0
        now = time.monotonic()
        cutoff = now - window_seconds
        with self._lock:
            if len(self._hits) > self._max_keys or now - self._last_prune >= self._prune_every:
                self._prune(cutoff)
                self._last_prune = now

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= limit:
                return False, len(hits)
            hits.append(now)
            return True, len(hits)

    def _prune(self, cutoff: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_prune = 0.0


rate_limiter = SlidingWindowRateLimiter()


def _ip_in_networks(ip: Optional[str], networks: list[str]) -> bool:
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip in networks
    for entry in networks:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def get_client_ip(request: Request) -> Optional[str]:
    """Client address; forwarded headers count only behind a trusted proxy."""
    peer_ip = request.client.host if request.client else None
    if not _ip_in_networks(peer_ip, get_settings().trusted_proxy_cidrs):
        return peer_ip

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    forwarded = [part.strip() for part in request.headers.get("x-forwarded-for", "").split(",") if part.strip()]
    # Rightmost entry was appended by our own proxy.
    return forwarded[-1] if forwarded else peer_ip
