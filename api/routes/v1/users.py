"""
api/routes/v1/users.py -- User administration and avatar upload.

Routes:
  GET    /api/v1/users               -- list all users (admin only)
  POST   /api/v1/users               -- create user, may assign ADMIN (admin only)
  GET    /api/v1/users/{id}          -- get one user (admin only)
  PATCH  /api/v1/users/{id}          -- update names/role/is_active (admin only)
  DELETE /api/v1/users/{id}          -- delete user (admin only)
  PATCH  /api/v1/users/{id}/avatar   -- upload a private avatar (owner or admin)

Security:
  [R1] Only this router can create an ADMIN, and it sits behind require_admin.
  [M4] PATCH and DELETE block removing your own access and removing the last
       active admin.
  Avatars go to the private bucket; the response exposes only the proxy path.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool

from api.models import UserCreate, UserPatch, UserResponse, to_user_response
from api.routes.v1.images import get_asset_broker
from auth.dependencies import get_current_user, require_admin
from auth.models import NewUser, Role, User
from auth.store import UserStore
from core.errors import Forbidden, UserNotFound
from storage.assets import AssetType
from storage.avatars import IMAGE_EXTENSIONS, MAX_AVATAR_BYTES, avatar_key_for
from storage.broker import AssetBroker

logger = logging.getLogger("shopgate.api.users")

router = APIRouter()


def _get_user_or_404(store: UserStore, user_id: int) -> User:
    user = store.get_by_id(user_id)
    if user is None:
        raise UserNotFound()
    return user


def _is_last_active_admin(store: UserStore, target: User) -> bool:
    return target.is_admin and target.is_active and store.count_active_admins() <= 1


# ---------------------------------------------------------------------------
# Administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    store: UserStore = request.app.state.user_store
    return [to_user_response(u) for u in store.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate, current_user: User = Depends(require_admin)) -> UserResponse:
    """Create an account on someone's behalf. No welcome email, no session."""
    created = request.app.state.session_manager.provision_user(
        NewUser(
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            password=body.password,
            role=body.role,
        ),
        creator=current_user,
    )
    logger.info("Admin %s created user %s", current_user.id, created.id)
    return to_user_response(created)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, current_user: User = Depends(require_admin)) -> UserResponse:
    return to_user_response(_get_user_or_404(request.app.state.user_store, user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Update a user's names, role or active flag. Admin only.

    [M4] Prevents:
      - Self-deactivation and self-demotion (admin locking themselves out).
      - Deactivating or demoting the last active admin.
    """
    store: UserStore = request.app.state.user_store
    target = _get_user_or_404(store, user_id)

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    removes_admin = updates.get("is_active") is False or updates.get("role", target.role) != Role.ADMIN
    if removes_admin and target.is_admin:
        if target.id == current_user.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_lockout", "message": "You cannot deactivate or demote your own account."},
            )
        if _is_last_active_admin(store, target):
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot deactivate or demote the last active admin."},
            )

    store.update_user(user_id, **updates)
    if updates.get("is_active") is False:
        # A disabled account must not keep a usable refresh token.
        store.set_refresh_token_hash(user_id, None)
    return to_user_response(_get_user_or_404(store, user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, current_user: User = Depends(require_admin)) -> Response:
    store: UserStore = request.app.state.user_store
    target = _get_user_or_404(store, user_id)
    if target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    if _is_last_active_admin(store, target):
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot delete the last active admin."},
        )
    store.delete_user(user_id)
    logger.info("Admin %s deleted user %s", current_user.id, user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Avatar upload (owner or admin)
# ---------------------------------------------------------------------------


@router.patch("/users/{user_id}/avatar", response_model=UserResponse)
async def upload_avatar(
    request: Request,
    user_id: int,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    broker: AssetBroker = Depends(get_asset_broker),
) -> UserResponse:
    """Store an image in the private bucket and make it the user's avatar.

    The previous avatar object is left in storage; only the reference moves.
    """
    if current_user.id != user_id and not current_user.is_admin:
        raise Forbidden("You can only change your own avatar.")

    extension = IMAGE_EXTENSIONS.get((file.content_type or "").lower())
    if extension is None:
        raise HTTPException(
            status_code=415,
            detail={
                "code": "unsupported_media_type",
                "message": f"Avatar must be one of: {', '.join(sorted(IMAGE_EXTENSIONS))}.",
            },
        )

    data = await file.read(MAX_AVATAR_BYTES + 1)
    if not data:
        raise HTTPException(status_code=400, detail={"code": "empty_file", "message": "Uploaded file is empty."})
    if len(data) > MAX_AVATAR_BYTES:
        raise HTTPException(
            status_code=413,
            detail={"code": "file_too_large", "message": "Avatar must be 5 MB or smaller."},
        )

    store: UserStore = request.app.state.user_store
    await run_in_threadpool(_get_user_or_404, store, user_id)

    key = avatar_key_for(user_id, extension)
    await run_in_threadpool(broker.upload, AssetType.AVATAR, key, data, file.content_type)
    await run_in_threadpool(store.set_avatar_key, user_id, key)
    logger.info("User %s uploaded avatar for user %s", current_user.id, user_id)

    updated = await run_in_threadpool(_get_user_or_404, store, user_id)
    return to_user_response(updated)
