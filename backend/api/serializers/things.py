"""
Thing mapper - Thing entity -> generated `Thing` binding.

Pure and total: no I/O, no raising for any well-formed entity, and mapping
the same entity twice yields equal results. Storage-relative image keys are
resolved to CDN URLs here, so handlers and services never build URLs.
"""

from typing import Optional
from urllib.parse import quote

from models.thing import Thing


def resolve_asset_url(cdn_base_url: str, key: Optional[str]) -> Optional[str]:
    """
    Turn a storage key into an externally resolvable URL.

    Keys that are already absolute URLs pass through unchanged.
    """
    if not key:
        return None
    if key.startswith(("http://", "https://")):
        return key
    return f"{cdn_base_url.rstrip('/')}/{quote(key.lstrip('/'), safe='/')}"


def map_thing(thing: Thing, bindings, cdn_base_url: str):
    """Map a Thing entity onto the generated `Thing` response binding."""
    return bindings.get("Thing")(
        id=thing.id,
        owner_id=thing.owner_id,
        name=thing.name,
        description=thing.description,
        image_url=resolve_asset_url(cdn_base_url, thing.image_key),
        created_at=thing.created_at,
        updated_at=thing.updated_at,
    )
