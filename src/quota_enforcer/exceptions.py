"""Exceptions raised by the reconciliation path."""

from typing import Optional


class QuotaEnforcerError(Exception):
    """Base exception for the enforcer."""

    def __init__(self, message: str, namespace: Optional[str] = None):
        super().__init__(message)
        self.namespace = namespace


class EnforcementError(QuotaEnforcerError):
    """Usage could not be computed or a violation could not be resolved."""


class StatusUpdateError(QuotaEnforcerError):
    """Writing the policy status subresource failed."""
