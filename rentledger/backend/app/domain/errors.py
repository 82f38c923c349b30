# backend/app/domain/errors.py
from __future__ import annotations


class LedgerError(Exception):
    """Base for every error the rent ledger reports to its callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAllocation(LedgerError):
    """Amount exceeds the charge balance or what is left on the payment."""

    status_code = 422


class InvalidNotification(LedgerError):
    """Inbound notification is missing its transaction id or carries no amount."""

    status_code = 422


class DuplicateExternalReference(LedgerError):
    """Notification already processed. Absorbed by the matcher, never surfaced."""

    status_code = 200


class AmbiguousMatch(LedgerError):
    """More than one candidate tenancy. Absorbed by the matcher, never surfaced."""

    status_code = 200


class ImmutablePayment(LedgerError):
    status_code = 409


class ChargeNotFound(LedgerError):
    status_code = 404


class PaymentNotFound(LedgerError):
    status_code = 404


class TenancyNotFound(LedgerError):
    status_code = 404


class InvalidPayment(LedgerError):
    """Manual payment command with a non-positive amount or unknown method."""

    status_code = 422
