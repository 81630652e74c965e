"""Request scoping dependencies.

Organization scope comes from the X-Org-Id header set by the gateway in
front of this service; the internal cron endpoint authenticates with a
shared secret in X-Cron-Secret.
"""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, status
from loguru import logger

from app.config.settings import settings


def get_org_id(x_org_id: str | None = Header(None, alias="X-Org-Id")) -> str:
    """FastAPI dependency returning the caller's organization id.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if not x_org_id or not x_org_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Org-Id header",
        )
    return x_org_id.strip()


def require_cron_secret(x_cron_secret: str | None = Header(None, alias="X-Cron-Secret")) -> None:
    """FastAPI dependency guarding internal cron endpoints.

    Raises:
        HTTPException: 401 if the secret is not configured or does not match
    """
    if not settings.cron_secret:
        logger.warning("[HORIZON] Cron call rejected: CRON_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Cron endpoint disabled")
    if not x_cron_secret or not secrets.compare_digest(x_cron_secret, settings.cron_secret):
        logger.warning("[HORIZON] Cron call rejected: invalid X-Cron-Secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
