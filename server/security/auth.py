"""Admin-token check for the review and indexing routes."""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Query

from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


class AdminTokenGuard:
    """FastAPI dependency accepting ``x-admin-token`` or ``?token=``.

    The token is injected at construction; an empty one is a configuration
    error, raised before any route is served.
    """

    def __init__(self, token: str):
        if not token:
            raise ConfigurationError("admin token must be configured")
        self._token = token

    def check(self, candidate: Optional[str]) -> bool:
        if not candidate:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), self._token.encode("utf-8"))

    async def __call__(self,
                       x_admin_token: Optional[str] = Header(default=None),
                       token: Optional[str] = Query(default=None)):
        if not self.check(x_admin_token or token):
            logger.warning("Rejected admin request with missing or bad token")
            raise HTTPException(status_code=401, detail="unauthorized")
