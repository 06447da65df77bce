"""Crowdsale error kinds.

Every mutating operation checks its preconditions before touching state,
so catching one of these means nothing changed. They subclass ValueError
so the service layer can treat them like any other rejected input.
"""

from __future__ import annotations


class CrowdsaleError(ValueError):
    """Base class for rejected crowdsale operations."""


class SaleClosed(CrowdsaleError):
    """Contribution attempted outside the sale window."""


class CapExceeded(CrowdsaleError):
    """Presale or public token cap would be exceeded."""


class AlreadyFinalized(CrowdsaleError):
    """The sale has already reached a terminal state."""


class PendingKYC(CrowdsaleError):
    """Finalization attempted while allocations are still KYC-locked."""


class NotAuthorized(CrowdsaleError):
    """Caller is not the sale administrator."""


class InvalidState(CrowdsaleError):
    """Operation not allowed in the current state."""


class ZeroAmount(CrowdsaleError):
    """Operation on a zero value or a zero locked balance."""
