"""
Admission control: rate limits, CORS and request signatures.
"""

from .cors import CORSConfig, setup_cors
from .rate_limit import (RateConfig, RateLimiter, RateRule, rate_limit,
                         setup_rate_limiter)
from .signatures import (AcceptAllVerifier, Ed25519SignatureVerifier,
                         SignatureVerifier, build_signature_verifier,
                         require_signature)

__all__ = [
    "CORSConfig",
    "setup_cors",
    "RateConfig",
    "RateLimiter",
    "RateRule",
    "rate_limit",
    "setup_rate_limiter",
    "SignatureVerifier",
    "AcceptAllVerifier",
    "Ed25519SignatureVerifier",
    "build_signature_verifier",
    "require_signature",
]
