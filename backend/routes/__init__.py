"""
API routes. Every route is bound to one contract operation via @api_contract.
"""

from .health import health_bp
from .things import things_bp

BLUEPRINTS = (health_bp, things_bp)

__all__ = ['health_bp', 'things_bp', 'BLUEPRINTS']
