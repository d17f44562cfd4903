"""Security package for the siteqa API."""

from .auth import AdminTokenGuard
from .cors import (
    setup_cors,
    setup_api_security,
    get_cors_config,
    SecurityHeadersMiddleware
)

__all__ = [
    "AdminTokenGuard",
    "setup_cors",
    "setup_api_security",
    "get_cors_config",
    "SecurityHeadersMiddleware"
]
