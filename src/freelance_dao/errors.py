"""Failure taxonomy for marketplace operations.

Every failure aborts the triggering transaction in full. Callers inspect
the kind and resubmit only after correcting the violated condition:

- authorization: caller lacks the role or identity for the operation.
- precondition: job/proposal not in the required status or window.
- resource: zero or duplicate funding, missing voting weight, quorum.
- transfer: the recipient of a disbursement rejected the value.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Classification carried by every marketplace failure."""
    AUTHORIZATION = "authorization"
    PRECONDITION = "precondition"
    RESOURCE = "resource"
    TRANSFER = "transfer"


class MarketplaceError(Exception):
    """Base class. Raising one inside a transaction rolls it back."""
    kind: ErrorKind = ErrorKind.PRECONDITION


class AuthorizationError(MarketplaceError):
    kind = ErrorKind.AUTHORIZATION


class PreconditionError(MarketplaceError):
    kind = ErrorKind.PRECONDITION


class ReentrancyError(PreconditionError):
    """A guarded entry point was invoked while already in flight."""


class ResourceError(MarketplaceError):
    kind = ErrorKind.RESOURCE


class TransferError(MarketplaceError):
    kind = ErrorKind.TRANSFER


class TransferRejected(TransferError):
    """Raised by a receive hook to refuse an incoming value transfer."""
