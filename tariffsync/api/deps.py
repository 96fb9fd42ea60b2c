"""TariffSync — Route Dependencies."""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request

from tariffsync.core.context import ServiceContext
from tariffsync.core.logging import get_logger
from tariffsync.sync.dispatch import SyncDispatcher

logger = get_logger("api.auth")


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def get_dispatcher(request: Request) -> SyncDispatcher:
    return request.app.state.dispatcher


def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    """Shared-secret check on the ``x-api-key`` header.

    With no key configured every request is refused.
    """
    expected = get_context(request).settings.api_key
    if not expected or not x_api_key or not secrets.compare_digest(x_api_key, expected):
        logger.warning(f"Unauthorized request to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")
