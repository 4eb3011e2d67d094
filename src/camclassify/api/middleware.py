"""Request dependencies: API key authentication and pipeline readiness."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from camclassify.pipeline.gallery import GalleryClassifier  # noqa: TC001

if TYPE_CHECKING:
    from camclassify.config import Settings
    from camclassify.pipeline.runtime import PipelineRuntime

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_runtime(request: Request) -> PipelineRuntime:
    runtime: PipelineRuntime = request.app.state.runtime
    return runtime


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (CAMCLASSIFY_API_KEY not set), all requests pass.
    If configured, requests must include 'Authorization: Bearer <key>'.
    """
    expected = get_settings_from_request(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_gallery(request: Request) -> GalleryClassifier:
    """Return the gallery classifier, or 503 while the model is not loaded."""
    gallery = get_runtime(request).gallery
    if gallery is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Model is not ready",
        )
    return gallery
