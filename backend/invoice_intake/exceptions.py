from __future__ import annotations

"""Domain-specific exceptions for service and orchestration layers.

Routers should catch these and translate them to appropriate HTTP responses.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .models import Vendor


class FileValidationError(Exception):
    """Invalid file input (mime, empty, unreadable, pages exceeded, etc.)."""


class PayloadTooLargeError(Exception):
    """Payload exceeds configured size limits (maps to HTTP 413)."""


class NotFoundError(Exception):
    """Resource not found or does not belong to the caller (maps to HTTP 404)."""


class ExternalServiceError(Exception):
    """Upstream provider or storage error (maps to HTTP 503)."""


class MalformedResponseError(ExternalServiceError):
    """The language model answered, but not with a decodable JSON object."""


class DuplicateVendorError(Exception):
    """A vendor with the same normalized name already exists for the tenant.

    Raised by stores that enforce (tenantId, normalizedName) uniqueness.
    """

    def __init__(self, existing: "Vendor") -> None:
        super().__init__(f"Vendor already exists: {existing.name}")
        self.existing = existing
