# Overview: Domain error taxonomy shared by services, routes and the CLI.

from __future__ import annotations


class BackofficeError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": str(self)}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BackofficeError, ValueError):
    """400-level input problem (malformed amount, missing field)."""

    status_code = 400


class NotFoundError(BackofficeError):
    """Unknown order, receivable, sale, product or combination."""

    status_code = 404


class InvalidStateError(BackofficeError):
    """Operation is illegal from the current lifecycle status."""

    status_code = 409


class InsufficientStockError(BackofficeError):
    """Sale pre-check found less stock than requested."""

    status_code = 409


class ConflictError(BackofficeError, ValueError):
    """409-level integrity conflict (sequence backstop, duplicate SKU)."""

    status_code = 409
