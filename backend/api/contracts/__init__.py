"""
Contract enforcement package.

Provides the contract loader/store, the binding generator, contract diffing,
request validation, and the @api_contract decorator.
"""

from .document import (
    Contract,
    Operation,
    PropertySpec,
    SchemaDef,
)
from .loader import load_contract
from .registry import ContractStore
from .generate import render_bindings, write_bindings
from .bindings import BindingSet, load_bindings, check_bindings
from .diff import ContractDiff, diff_contracts
from .wrapper import api_contract

__all__ = [
    'Contract',
    'Operation',
    'PropertySpec',
    'SchemaDef',
    'load_contract',
    'ContractStore',
    'render_bindings',
    'write_bindings',
    'BindingSet',
    'load_bindings',
    'check_bindings',
    'ContractDiff',
    'diff_contracts',
    'api_contract',
]
