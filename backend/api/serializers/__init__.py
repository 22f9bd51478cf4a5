"""
Response serializers, envelope helpers and entity mappers.
"""

from .response import success_envelope, paginated_envelope, error_envelope, Paginated
from .things import map_thing, resolve_asset_url
from .health import map_health

__all__ = [
    'success_envelope',
    'paginated_envelope',
    'error_envelope',
    'Paginated',
    'map_thing',
    'resolve_asset_url',
    'map_health',
]
