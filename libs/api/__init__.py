"""Shared HTTP plumbing for the FastAPI services."""

from .errors import install_error_handlers
from .rate_limit import RateLimiter, RateLimitMiddleware

__all__ = ["install_error_handlers", "RateLimiter", "RateLimitMiddleware"]
