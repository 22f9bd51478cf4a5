"""
Models package - SQLAlchemy models
"""
from models.base import Base
from models.thing import Thing

__all__ = [
    'Base',
    'Thing',
]
