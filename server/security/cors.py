"""CORS and response security headers for the siteqa API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8000"
]


def get_cors_config(origins: Optional[List[str]] = None) -> dict:
    """CORS settings for the given origins, falling back to local dev origins."""
    allow_origins = list(origins) if origins else list(DEFAULT_DEV_ORIGINS)
    wildcard = "*" in allow_origins

    return {
        "allow_origins": allow_origins,
        # Browsers reject credentialed responses with a wildcard origin
        "allow_credentials": not wildcard,
        "allow_methods": ["GET", "POST", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Accept",
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "X-Admin-Token"
        ],
        "max_age": 600
    }


def setup_cors(app: FastAPI, origins: Optional[List[str]] = None) -> None:
    """Setup CORS middleware for FastAPI application."""
    config = get_cors_config(origins)
    app.add_middleware(CORSMiddleware, **config)
    logger.info(f"CORS configured with origins: {config['allow_origins']}")


class SecurityHeadersMiddleware:
    """Add security headers to all responses."""

    HEADERS = {
        b"x-content-type-options": b"nosniff",
        b"x-frame-options": b"DENY",
        b"referrer-policy": b"strict-origin-when-cross-origin"
    }

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                headers = [(k, v) for k, v in message.get("headers", []) if k.lower() not in self.HEADERS]
                message["headers"] = headers + list(self.HEADERS.items())
            await send(message)

        await self.app(scope, receive, send_wrapper)


def setup_api_security(app: FastAPI, origins: Optional[List[str]] = None) -> None:
    """Setup CORS plus security headers."""
    setup_cors(app, origins)
    app.add_middleware(SecurityHeadersMiddleware)
