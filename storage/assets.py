"""
storage/assets.py -- Asset categories and their access policy.

Visibility is a pure function of the category, fixed when an asset is
uploaded and never re-derived from runtime state:

  PRODUCT_IMAGE, CATEGORY_IMAGE  public   direct URL, cached for a year, immutable
  AVATAR, KYC_DOCUMENT           private  reached only through a 1 h grant or the proxy

The mapping is total over AssetType. A category without a policy is a
programming error and fails at import, not at request time.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

PRIVATE_GRANT_SECONDS = 60 * 60


class AssetType(str, Enum):
    PRODUCT_IMAGE = "PRODUCT_IMAGE"
    CATEGORY_IMAGE = "CATEGORY_IMAGE"
    AVATAR = "AVATAR"
    KYC_DOCUMENT = "KYC_DOCUMENT"


@dataclass(frozen=True)
class AccessPolicy:
    is_public: bool
    cache_control: str
    grant_lifetime_seconds: int | None = None


_PUBLIC_CATALOG = AccessPolicy(is_public=True, cache_control="public, max-age=31536000, immutable")
_PRIVATE = AccessPolicy(
    is_public=False,
    cache_control=f"private, max-age={PRIVATE_GRANT_SECONDS}",
    grant_lifetime_seconds=PRIVATE_GRANT_SECONDS,
)

_POLICIES: dict[AssetType, AccessPolicy] = {
    AssetType.PRODUCT_IMAGE: _PUBLIC_CATALOG,
    AssetType.CATEGORY_IMAGE: _PUBLIC_CATALOG,
    AssetType.AVATAR: _PRIVATE,
    AssetType.KYC_DOCUMENT: _PRIVATE,
}

_missing = set(AssetType) - set(_POLICIES)
if _missing:
    raise RuntimeError(f"No access policy for asset types: {sorted(t.value for t in _missing)}")


def policy_for(asset_type: AssetType) -> AccessPolicy:
    return _POLICIES[AssetType(asset_type)]


def is_public(asset_type: AssetType) -> bool:
    return policy_for(asset_type).is_public


_KEY_PREFIXES: dict[AssetType, str] = {
    AssetType.PRODUCT_IMAGE: "products",
    AssetType.CATEGORY_IMAGE: "categories",
    AssetType.AVATAR: "avatars",
    AssetType.KYC_DOCUMENT: "kyc",
}


def new_asset_key(asset_type: AssetType, extension: str) -> str:
    """Return a fresh, unguessable key such as products/3f2a...c9.jpg."""
    return f"{_KEY_PREFIXES[AssetType(asset_type)]}/{uuid.uuid4().hex}.{extension.lstrip('.')}"
