"""Domain exceptions shared by the sync engine, webhooks and settlement path."""

from typing import Any, Dict, List, Optional


class ChainSyncError(Exception):
    """Base exception for the sync service."""
    pass


class RecordValidationError(ChainSyncError):
    """Raised when an incoming record is missing or has invalid fields.

    Raised before anything reaches the store, so a rejected payload has no
    side effects.
    """

    def __init__(
        self,
        entity_type: str,
        errors: List[Dict[str, Any]],
        index: Optional[int] = None,
    ):
        self.entity_type = entity_type
        self.errors = errors
        self.index = index
        fields = sorted({".".join(str(p) for p in e.get("loc", ())) for e in errors})
        where = f"{entity_type}[{index}]" if index is not None else entity_type
        super().__init__(f"Invalid {where} record: {', '.join(fields) or 'bad payload'}")


class AuthorizationError(ChainSyncError):
    """Raised when a webhook credential is missing or wrong."""
    pass


class NotFoundError(ChainSyncError):
    """Raised when a referenced record does not exist."""
    pass


class ConflictError(ChainSyncError):
    """Raised when another request is already working on the same record."""
    pass


class ServiceUnavailableError(ChainSyncError):
    """Raised when a required collaborator is not configured or reachable."""
    pass


class IndexerQueryError(ChainSyncError):
    """Raised when the external indexer cannot be queried."""
    pass
