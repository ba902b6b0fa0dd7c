from __future__ import annotations

"""
Token-bucket admission control for FastAPI.

Budgets
-------
- default:  coarse per-client-IP budget applied by middleware to every route.
- verify:   strict budget for verification submission, keyed by client IP
            *and* the wallet address being verified, to blunt targeted retries.
- issuance: very strict hourly budget for credential issuance, keyed by IP.

Exceeding any budget raises :class:`~sybilshield_relay.errors.RateLimited`
(429 with a Retry-After hint). Requests are never queued or silently dropped.

In-memory buckets are per-process. A multi-worker deployment needs a shared
store; only :class:`TokenStore` would change.

Usage
-----
    @router.post("/verify/{provider}", dependencies=[rate_limit("verify", key=ip_and_address)])
    async def submit(...): ...

Accepted rate units: r/s, r/m, r/h.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Tuple

from fastapi import Depends, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..errors import RateLimited
from ..logging import get_logger

log = get_logger(__name__)

_RATE_RE = re.compile(r"^\s*(\d+)\s*r\s*/\s*([smh])\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1.0, "m": 60.0, "h": 3600.0}


def parse_rate(rate: str) -> float:
    """
    Parse e.g. "10r/s", "3r/m", "5r/h" into tokens per second.
    """
    m = _RATE_RE.match(rate or "")
    if not m:
        raise ValueError(f"Invalid rate spec: {rate!r}")
    return float(m.group(1)) / _UNIT_SECONDS[m.group(2).lower()]


@dataclass(frozen=True)
class RateRule:
    name: str
    refill_per_sec: float
    capacity: float  # burst
    cost: float = 1.0


def rule_from(rate: str, burst: Optional[int], *, name: str) -> RateRule:
    rps = parse_rate(rate)
    cap = float(burst if burst is not None else max(1, int(rps * 2)))
    return RateRule(name=name, refill_per_sec=rps, capacity=cap)


@dataclass
class RateConfig:
    default_rule: RateRule
    named_rules: Dict[str, RateRule] = field(default_factory=dict)
    enabled: bool = True
    # Probes and scraping must not be starved by client traffic.
    exempt_prefixes: Tuple[str, ...] = ("/health", "/metrics", "/version")


def _default_config() -> RateConfig:
    return RateConfig(
        default_rule=rule_from("10r/m", 10, name="default"),
        named_rules={
            "verify": rule_from("3r/m", 3, name="verify"),
            "issuance": rule_from("5r/h", 5, name="issuance"),
        },
    )


# ------------------------------ token buckets ---------------------------------


class TokenBucket:
    __slots__ = ("capacity", "refill_per_sec", "tokens", "ts", "lock", "clock")

    def __init__(self, capacity: float, refill_per_sec: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.capacity = float(capacity)
        self.refill_per_sec = float(refill_per_sec)
        self.tokens = float(capacity)
        self.clock = clock
        self.ts = clock()
        self.lock = asyncio.Lock()

    async def try_consume(self, cost: float = 1.0) -> Tuple[bool, float, float]:
        """
        Attempt to consume `cost` tokens.

        Returns (allowed, retry_after_seconds, remaining)
        """
        async with self.lock:
            now = self.clock()
            elapsed = max(0.0, now - self.ts)
            if self.refill_per_sec > 0.0 and elapsed > 0.0:
                self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_sec)
            self.ts = now

            if self.tokens >= cost:
                self.tokens -= cost
                return True, 0.0, self.tokens

            deficit = cost - self.tokens
            return False, deficit / max(self.refill_per_sec, 1e-9), max(0.0, self.tokens)


class TokenStore:
    """In-memory buckets keyed by (rule name, identity)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._buckets: Dict[Tuple[str, str], TokenBucket] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, ident: str, rule: RateRule) -> TokenBucket:
        key = (rule.name, ident)
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(rule.capacity, rule.refill_per_sec, clock=self._clock)
                self._buckets[key] = bucket
            return bucket


# ------------------------------ identifier helpers ----------------------------


def client_ip(request: Request) -> str:
    """Best-effort client IP; honors common proxy headers."""
    xff = request.headers.get("x-forwarded-for", "")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    xri = request.headers.get("x-real-ip", "").strip()
    if xri:
        return xri
    client = request.client
    return client.host if client else "unknown"


async def wallet_address(request: Request) -> str:
    """Address a request acts on: X-Wallet-Address header, else the JSON body's ``address``."""
    hdr = request.headers.get("x-wallet-address", "").strip()
    if hdr:
        return hdr
    if request.method in ("POST", "PUT", "PATCH"):
        try:
            body = await request.json()
        except ValueError:
            return ""
        if isinstance(body, dict) and isinstance(body.get("address"), str):
            return body["address"].strip()
    return ""


async def ip_key(request: Request) -> str:
    return client_ip(request)


async def ip_and_address_key(request: Request) -> str:
    return f"{client_ip(request)}|{await wallet_address(request)}"


KeyFunc = Callable[[Request], Awaitable[str]]


# ------------------------------ limiter core ----------------------------------


class RateLimiter:
    def __init__(self, config: Optional[RateConfig] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.cfg = config or _default_config()
        self.store = TokenStore(clock=clock)

    def rule(self, name: str) -> RateRule:
        if name == "default":
            return self.cfg.default_rule
        try:
            return self.cfg.named_rules[name]
        except KeyError:
            raise KeyError(f"No rate rule named {name!r}") from None

    async def check(self, rule: RateRule, ident: str) -> None:
        """Consume one token from ``rule``'s bucket for ``ident``; raise RateLimited when empty."""
        if not self.cfg.enabled:
            return
        bucket = await self.store.get(ident, rule)
        allowed, retry_after, _remaining = await bucket.try_consume(rule.cost)
        if not allowed:
            log.warning("rate_limited", bucket=rule.name, ident=ident, retry_after=round(retry_after, 3))
            raise RateLimited(retry_after, bucket=rule.name)

    def is_exempt(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.cfg.exempt_prefixes)


# ------------------------------ middleware ------------------------------------


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies the coarse default budget, per client IP, to every non-exempt request."""

    def __init__(self, app, limiter: RateLimiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.method != "OPTIONS" and not self.limiter.is_exempt(request.url.path):
            try:
                await self.limiter.check(self.limiter.cfg.default_rule, client_ip(request))
            except RateLimited as exc:
                return exc.to_response()
        return await call_next(request)


def setup_rate_limiter(app, config: Optional[RateConfig] = None) -> RateLimiter:
    """Create the limiter, store it on ``app.state.limiter`` and install the middleware."""
    limiter = RateLimiter(config=config)
    app.state.limiter = limiter
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    return limiter


# ------------------------------ endpoint helper --------------------------------


def rate_limit(rule_name: str, *, key: KeyFunc = ip_key):
    """
    FastAPI dependency enforcing the named budget on one endpoint, in addition
    to the default budget applied by middleware.
    """

    async def _dep(request: Request) -> None:
        limiter: RateLimiter = request.app.state.limiter
        await limiter.check(limiter.rule(rule_name), await key(request))

    return Depends(_dep)


__all__ = [
    "RateRule",
    "RateConfig",
    "RateLimiter",
    "RateLimitMiddleware",
    "TokenBucket",
    "parse_rate",
    "rule_from",
    "client_ip",
    "wallet_address",
    "ip_key",
    "ip_and_address_key",
    "setup_rate_limiter",
    "rate_limit",
]
