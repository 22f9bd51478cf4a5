"""
Error taxonomy shared by every layer.

Each error carries:
- message: human-readable summary (safe to show to callers)
- details: optional structured payload for the error envelope
- http_status: status the error envelope is served with

Services raise these; the error-envelope handlers translate them.
Handlers never synthesize new ones.
"""

from typing import Any, Dict, Optional


class LockstepError(Exception):
    """Base class for all taxonomy errors."""

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self):
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error envelope body."""
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ContractError(LockstepError):
    """Binding generation cannot proceed (undefined, colliding or circular schema)."""


class InvalidRequest(LockstepError):
    """Structural validation failure at the handler boundary."""

    http_status = 400


class Unauthenticated(LockstepError):
    """No resolvable identity."""

    http_status = 401

    def __init__(self, message: str = "Unauthenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class Forbidden(LockstepError):
    """Identity resolved but lacks rights over the target resource."""

    http_status = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class NotFound(LockstepError):
    """Referenced entity does not exist."""

    http_status = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class MigrationFailure(LockstepError):
    """
    A migration step failed, or the ledger refuses to move.

    dirty=True means storage may be partially mutated and the ledger holds an
    in-progress marker; only an operator `force` clears it.
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        dirty: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.key = key
        self.dirty = dirty


class MigrationOrderError(MigrationFailure):
    """Requested transition would break the contiguous-prefix rule. Nothing was mutated."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, key=key, dirty=False)
