"""Escrowed freelance job marketplace with DAO-arbitrated disputes."""

from freelance_dao.accounts import component_address, ether, normalize_account
from freelance_dao.errors import (
    AuthorizationError,
    ErrorKind,
    MarketplaceError,
    PreconditionError,
    ReentrancyError,
    ResourceError,
    TransferError,
    TransferRejected,
)
from freelance_dao.service import MarketplaceService, ServiceResult

__version__ = "0.1.0"

__all__ = [
    "AuthorizationError",
    "ErrorKind",
    "MarketplaceError",
    "MarketplaceService",
    "PreconditionError",
    "ReentrancyError",
    "ResourceError",
    "ServiceResult",
    "TransferError",
    "TransferRejected",
    "component_address",
    "ether",
    "normalize_account",
]
