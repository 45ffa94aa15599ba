# Overview: Domain error taxonomy shared by services and routes.

"""
Authorization network error taxonomy.

Every business rejection raised by a service is a NetworkError subclass.
Routes turn them into JSON with `to_dict()` and `status_code`; anything
that is not a NetworkError is an unexpected fault and becomes a 500.

FAMILIES:
- ValidationError:            caller sent a missing/malformed field (400)
- NotFoundError:              referenced id does not exist (404)
- AccessDeniedError:          actor may not see or act on the record (403)
- GraphIntegrityError family: write would break the authorization graph (409)
- PricingError family:        product not available to this actor (422)
- ConflictError family:       concurrency/idempotency guards (409)
- PrematureCommissionError:   business-rule ordering violation (422)
- StorageError:               internal storage fault, safe to retry (503)
"""

from __future__ import annotations


class NetworkError(Exception):
    """Base class for every business rejection in the authorization network."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, *, field: str | None = None, entity_id=None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.entity_id = entity_id

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "error": {
                "kind": self.kind,
                "message": self.message,
                "field": self.field,
                "id": self.entity_id,
                "retryable": self.retryable,
            }
        }


class ValidationError(NetworkError):
    """400-level input problem."""


class NotFoundError(NetworkError):
    status_code = 404


class AccessDeniedError(NetworkError):
    status_code = 403


class NotActiveError(NetworkError):
    """Authorization is not currently active (or outside its validity window)."""

    status_code = 409


# =============================================================================
# GRAPH INTEGRITY
# =============================================================================

class GraphIntegrityError(NetworkError):
    status_code = 409


class GraphCycleError(GraphIntegrityError):
    """Linking the candidate edge would create a cycle or break the tier tree."""


class SubAuthorizationForbiddenError(GraphCycleError):
    """Candidate parent does not allow its grantee to sub-authorize."""


# =============================================================================
# PRICING
# =============================================================================

class PricingError(NetworkError):
    status_code = 422


class OutOfScopeError(PricingError):
    """Product lies outside the authorization's scope."""


class InvalidPriceError(PricingError):
    """Resolved price is zero or negative."""


# =============================================================================
# CONFLICTS (caller should refetch, not retry blindly)
# =============================================================================

class ConflictError(NetworkError):
    status_code = 409


class AlreadyProcessedError(ConflictError):
    pass


class SettlementAlreadySetError(ConflictError):
    pass


class InvalidTransitionError(ConflictError):
    pass


class PrematureCommissionError(NetworkError):
    status_code = 422


class StorageError(NetworkError):
    """Lock or stale-data conflicts persisted past the retry budget."""

    status_code = 503
    retryable = True


def internal_error_body() -> dict:
    """Body for unexpected faults; details stay in the server log."""
    return {
        "error": {
            "kind": "InternalError",
            "message": "Internal server error",
            "field": None,
            "id": None,
            "retryable": False,
        }
    }
