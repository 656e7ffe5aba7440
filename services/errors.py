"""
Error taxonomy shared by the stores, the bulk executor and the HTTP surface.

Every error carries a stable ``code`` so the admin UI can render a
differentiated message; remote error text only ever travels in ``details``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from schemas.bundle_schemas import ErrorCode


class BundleServiceError(Exception):
    """Base class; subclasses pin ``code`` and ``status_code``."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_envelope(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": True,
            "message": self.message,
            "code": self.code.value,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class BundleNotFoundError(BundleServiceError):
    code = ErrorCode.BUNDLE_NOT_FOUND
    status_code = 404


class BundleValidationError(BundleServiceError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class DuplicateBundleError(BundleServiceError):
    code = ErrorCode.DUPLICATE_BUNDLE
    status_code = 409


class LimitExceededError(BundleServiceError):
    code = ErrorCode.LIMIT_EXCEEDED
    status_code = 400


class InternalServiceError(BundleServiceError):
    code = ErrorCode.INTERNAL_ERROR
    status_code = 500


class UnauthorizedError(BundleServiceError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class MediaUploadError(InternalServiceError):
    """Upload pipeline failed or the asset never became resolvable."""


_NOT_FOUND_MARKERS = ("not found", "does not exist", "no metaobject")
_DUPLICATE_MARKERS = ("duplicate", "already exists", "taken")


def mentions_not_found(messages) -> bool:
    return any(marker in str(m).lower() for m in messages for marker in _NOT_FOUND_MARKERS)


def mentions_duplicate(messages) -> bool:
    return any(marker in str(m).lower() for m in messages for marker in _DUPLICATE_MARKERS)
