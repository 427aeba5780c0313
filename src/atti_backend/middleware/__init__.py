"""Security and access-log middleware."""

from .access_log import AccessLogMiddleware
from .security import PreAuthSecurityMiddleware, UserRateLimitMiddleware

__all__ = ["AccessLogMiddleware", "PreAuthSecurityMiddleware", "UserRateLimitMiddleware"]
