"""
api/routes/v1/images.py -- Asset endpoints.

Routes:
  GET  /api/v1/images/private/avatars/{filename}        -- stream a private avatar (owner or admin)
  GET  /api/v1/images/private/avatars/{filename}/grant  -- presigned URL for the same (owner or admin)
  POST /api/v1/images/catalog/{asset_type}              -- upload a public catalog image (admin only)

Public assets are never proxied: their upload returns a direct URL and
clients fetch from the bucket or CDN.

The avatar proxy reads the object in bounded chunks and closes the upstream
body on every exit path, including a client that disconnects mid-download.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from api.models import CatalogUploadResponse, GrantResponse
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from core.errors import StorageUnavailable
from storage.assets import AssetType, new_asset_key, policy_for
from storage.avatars import IMAGE_EXTENSIONS, authorize_avatar
from storage.broker import AssetBroker, AssetStream

logger = logging.getLogger("shopgate.api.images")

MAX_CATALOG_BYTES = 10 * 1024 * 1024

router = APIRouter()


def get_asset_broker(request: Request) -> AssetBroker:
    """FastAPI dependency: the configured broker, or 503 when storage is not set up."""
    broker = getattr(request.app.state, "asset_broker", None)
    if broker is None:
        raise StorageUnavailable("Asset storage is not configured.")
    return broker


async def _relay(stream: AssetStream) -> AsyncIterator[bytes]:
    # Each blocking read runs in the threadpool. Cancellation (client gone)
    # lands between reads, so the finally block can always close the body.
    chunks = stream.iter_chunks()
    try:
        while True:
            chunk = await run_in_threadpool(next, chunks, None)
            if chunk is None:
                break
            yield chunk
    finally:
        chunks.close()
        stream.close()


# ---------------------------------------------------------------------------
# Private avatars
# ---------------------------------------------------------------------------


@router.get("/images/private/avatars/{filename}")
async def stream_avatar(
    request: Request,
    filename: str,
    current_user: User = Depends(get_current_user),
    broker: AssetBroker = Depends(get_asset_broker),
) -> StreamingResponse:
    key = await run_in_threadpool(authorize_avatar, current_user, filename, request.app.state.user_store)
    stream = await run_in_threadpool(broker.stream, key, AssetType.AVATAR)

    headers = {
        "Cache-Control": policy_for(AssetType.AVATAR).cache_control,
        "Content-Disposition": f'inline; filename="{filename}"',
    }
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    if stream.last_modified_http:
        headers["Last-Modified"] = stream.last_modified_http

    return StreamingResponse(
        _relay(stream),
        media_type=stream.content_type,
        headers=headers,
        background=BackgroundTask(stream.close),
    )


@router.get("/images/private/avatars/{filename}/grant", response_model=GrantResponse)
def grant_avatar(
    request: Request,
    filename: str,
    current_user: User = Depends(get_current_user),
    broker: AssetBroker = Depends(get_asset_broker),
) -> GrantResponse:
    """Return a time-bounded direct URL for an avatar the caller may see."""
    key = authorize_avatar(current_user, filename, request.app.state.user_store)
    return GrantResponse(
        url=broker.grant_access(key, AssetType.AVATAR),
        expires_in=policy_for(AssetType.AVATAR).grant_lifetime_seconds,
    )


# ---------------------------------------------------------------------------
# Public catalog imagery (admin only)
# ---------------------------------------------------------------------------


@router.post("/images/catalog/{asset_type}", response_model=CatalogUploadResponse, status_code=201)
async def upload_catalog_image(
    asset_type: AssetType,
    file: UploadFile = File(...),
    current_user: User = Depends(require_admin),
    broker: AssetBroker = Depends(get_asset_broker),
) -> CatalogUploadResponse:
    if not policy_for(asset_type).is_public:
        raise HTTPException(
            status_code=400,
            detail={"code": "not_public_asset", "message": f"{asset_type.value} is not a public asset type."},
        )

    content_type = (file.content_type or "").lower()
    extension = IMAGE_EXTENSIONS.get(content_type)
    if extension is None:
        raise HTTPException(
            status_code=415,
            detail={
                "code": "unsupported_media_type",
                "message": f"Image must be one of: {', '.join(sorted(IMAGE_EXTENSIONS))}.",
            },
        )

    data = await file.read(MAX_CATALOG_BYTES + 1)
    if not data:
        raise HTTPException(status_code=400, detail={"code": "empty_file", "message": "Uploaded file is empty."})
    if len(data) > MAX_CATALOG_BYTES:
        raise HTTPException(
            status_code=413,
            detail={"code": "file_too_large", "message": "Image must be 10 MB or smaller."},
        )

    key = new_asset_key(asset_type, extension)
    url = await run_in_threadpool(broker.upload, asset_type, key, data, content_type)
    logger.info("Admin %s uploaded %s %s", current_user.id, asset_type.value, key)
    return CatalogUploadResponse(key=key, url=url)
