"""Request guards: API key authentication and local file access."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from collections.abc import Iterable

    from thumbforge.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)

LOCAL_FILES_DISABLED = "Local file access is disabled"


def _settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject requests without the configured bearer token.

    With THUMBFORGE_API_KEY unset every request passes.
    """
    api_key = _settings(request).api_key
    if api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_local_files(request: Request) -> None:
    """Gate routes that read or write server-side paths."""
    if not _settings(request).local_files_enabled:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=LOCAL_FILES_DISABLED)


def touches_local_files(settings: Settings, params: dict[str, object], keys: Iterable[str]) -> bool:
    """Whether ``params`` names a server-side path while local file access is off."""
    return not settings.local_files_enabled and any(key in params for key in keys)
