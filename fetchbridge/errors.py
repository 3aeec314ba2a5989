"""Ledger error types — every failed call raises one of these and leaves state untouched.

Each error carries a stable ``code`` used on the wire, so the relayer can
tell a stale request (``NotFound``) from a forged token (``TokenMismatch``).
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for call failures on the ledger side."""

    code = "LedgerError"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Overflow(LedgerError):
    """Request id space exhausted. Fatal, never expected in practice."""

    code = "Overflow"
    status_code = 500


class NotFound(LedgerError):
    code = "NotFound"
    status_code = 404


class TokenMismatch(LedgerError):
    code = "TokenMismatch"
    status_code = 409


class NoBody(LedgerError):
    code = "NoBody"
    status_code = 409


class Unauthorized(LedgerError):
    code = "Unauthorized"
    status_code = 403


class ArgumentTooLarge(LedgerError):
    code = "ArgumentTooLarge"
    status_code = 413


class SubmissionError(RuntimeError):
    """A ledger call or transaction was rejected (relayer side)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
