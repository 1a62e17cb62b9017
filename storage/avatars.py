"""
storage/avatars.py -- Avatar key naming and the ownership check for private avatars.

Keys look like avatars/user-{owner_id}-{epoch_ms}.{ext}. The owner id is
encoded in the filename so the proxy can authorize a request before touching
storage. The checks run in this order:

  1. filename does not encode an owner           -> NotFound
  2. caller is neither the owner nor an ADMIN    -> Forbidden
  3. key is not the owner's registered avatar    -> NotFound

Step 3 stops path guessing: a well-formed filename for your own id still
fails unless it is the avatar currently recorded on your account.
"""

from __future__ import annotations

import logging
import re
import time

from auth.models import User
from core.errors import Forbidden, NotFound

logger = logging.getLogger("shopgate.storage.avatars")

AVATAR_PREFIX = "avatars/"
MAX_AVATAR_BYTES = 5 * 1024 * 1024

# Content type -> file extension. Anything else is rejected at upload.
IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

_OWNER_PATTERN = re.compile(r"^user-(\d+)-")


def avatar_key_for(user_id: int, extension: str, now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{AVATAR_PREFIX}user-{user_id}-{now_ms}.{extension.lstrip('.')}"


def avatar_filename(key: str) -> str:
    return key[len(AVATAR_PREFIX):] if key.startswith(AVATAR_PREFIX) else key


def owner_id_from_filename(filename: str) -> int | None:
    if "/" in filename or "\\" in filename:
        return None
    match = _OWNER_PATTERN.match(filename)
    return int(match.group(1)) if match else None


def authorize_avatar(caller: User, filename: str, store) -> str:
    """Return the storage key for filename if caller may read it, else raise."""
    owner_id = owner_id_from_filename(filename)
    if owner_id is None:
        raise NotFound("Avatar not found.")

    if caller.id != owner_id and not caller.is_admin:
        logger.warning("User %s denied access to avatar of user %s", caller.id, owner_id)
        raise Forbidden("You can only view your own avatar.")

    key = AVATAR_PREFIX + filename
    owner = store.get_by_id(owner_id)
    if owner is None or owner.avatar_key != key:
        raise NotFound("Avatar not found.")
    return key
