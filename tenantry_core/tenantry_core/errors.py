"""Error taxonomy for reconciliation outcomes.

Every failure that the invitation lifecycle or the billing webhook
processor can surface is one of the classes below.  Each carries a stable
``code`` and the HTTP status the API layer renders it with, so routers
never need to translate domain errors by hand.

Terminal outcomes (the caller should not retry):

* :class:`NotFoundError`
* :class:`ExpiredError`
* :class:`ConflictError`
* :class:`ForbiddenError`
* :class:`UnverifiedError`
* :class:`InvalidPayloadError`

Retryable / operator-visible outcomes:

* :class:`TransientError` -- storage or provider failure.
* :class:`DataIntegrityError` -- a referenced entity cannot be resolved.
"""

from __future__ import annotations

from typing import Any


class ReconciliationError(Exception):
    """Base class for all classified reconciliation failures."""

    code: str = "reconciliation_error"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict[str, Any]:
        """Return the JSON body rendered by the API error handler."""
        return {"detail": self.message, "code": self.code}


class NotFoundError(ReconciliationError):
    """The token or entity does not exist."""

    code = "not_found"
    http_status = 404


class ExpiredError(ReconciliationError):
    """The entity exists but is no longer valid because of its age."""

    code = "expired"
    http_status = 410


class ConflictError(ReconciliationError):
    """The entity is not in the state the operation requires.

    Parameters
    ----------
    message:
        Human-readable description.
    observed_state:
        The state actually found in storage, when known.  Duplicate-create
        conflicts leave this as ``None``.
    """

    code = "conflict"
    http_status = 409

    def __init__(self, message: str, *, observed_state: str | None = None) -> None:
        super().__init__(message)
        self.observed_state = observed_state

    def to_response(self) -> dict[str, Any]:
        body = super().to_response()
        if self.observed_state is not None:
            body["observed_state"] = self.observed_state
        return body


class ForbiddenError(ReconciliationError):
    """The caller's role or identity does not permit the operation."""

    code = "forbidden"
    http_status = 403


class UnverifiedError(ReconciliationError):
    """A webhook payload failed signature verification."""

    code = "unverified"
    http_status = 400


class InvalidPayloadError(ReconciliationError):
    """A verified event is missing identifiers required to process it."""

    code = "invalid_payload"
    http_status = 400


class TransientError(ReconciliationError):
    """A storage or provider failure that a retry may resolve."""

    code = "transient"
    http_status = 503
    retryable = True


class DataIntegrityError(ReconciliationError):
    """A referenced plan, user or record cannot be resolved locally."""

    code = "data_integrity"
    http_status = 500
