"""
API package - contract enforcement layer.

This package provides:
- Contract store, binding generator and contract diffing
- Structural request validation against generated bindings
- @api_contract decorator for route enforcement
- Global middleware (request_id, identity, error_envelope)
"""

from .contracts import api_contract, ContractStore

__all__ = ['api_contract', 'ContractStore']
