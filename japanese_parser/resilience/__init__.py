"""
Resilience patterns guarding the Ichiran engine.

This module provides:
- Rate Limiter: Fixed window admission control per client
- Circuit Breaker: Stops calling a failing engine until it recovers
- Timeout: Bounds the duration of any asynchronous operation
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .rate_limiter import DEFAULT_CLIENT_ID, ClientWindow, RateLimiter
from .timeout import with_timeout

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "ClientWindow",
    "DEFAULT_CLIENT_ID",
    "RateLimiter",
    "with_timeout",
]
