"""
Error types for the KIPR SDK.

This module defines all exception types raised by the SDK:
- KiprError: Base exception
- ValidationError: Malformed input (paths, names, emails)
- AuthenticationError: Login credentials rejected
- PermissionDeniedError: Acting user lacks rights
- NotFoundError: Handle does not resolve within its parent scope
- ConflictError: Path or name already in use, stale write
- InvalidStateError: Operation on a closed entity
- TransportError: Network or remote-service failure

Invariants:
    - All errors inherit from KiprError
    - Every error carries a stable code for programmatic handling
    - Codes map one-to-one onto the REST error bodies
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class KiprError(Exception):
    """Base exception for all KIPR SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    default_code = "KIPR_ERROR"
    status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize into the REST error body."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class ValidationError(KiprError):
    """Input validation failed.

    Raised when:
    - A path is not absolute or has empty, '.' or '..' segments
    - A name is empty or too long
    - An email address is malformed
    """

    default_code = "VALIDATION_ERROR"
    status = 400

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"field": field_name, "value": value},
        )
        self.field_name = field_name
        self.value = value


class AuthenticationError(KiprError):
    """Login credentials were rejected, or the session is no longer valid.

    The message never says whether the username or the password was wrong.
    """

    default_code = "AUTHENTICATION_FAILED"
    status = 401

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class PermissionDeniedError(KiprError):
    """Acting user lacks rights for the operation.

    Raised when:
    - A member tries to add or remove organization users
    - A member tries to delete an organization or its projects
    """

    default_code = "PERMISSION_DENIED"
    status = 403

    def __init__(
        self,
        message: str,
        actor: Optional[str] = None,
        resource_id: Optional[str] = None,
        required_role: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "actor": actor,
                "resource_id": resource_id,
                "required_role": required_role,
            },
        )
        self.actor = actor
        self.resource_id = resource_id
        self.required_role = required_role


class NotFoundError(KiprError):
    """Handle does not resolve to an entity within its claimed parent scope."""

    default_code = "NOT_FOUND"
    status = 404

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(KiprError):
    """A create or move targets a path or name already in use.

    Also raised for writes against a version that is no longer HEAD and
    for updates whose expected revision is stale.
    """

    default_code = "CONFLICT"
    status = 409

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        key: Optional[str] = None,
        current_revision: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "key": key,
                "current_revision": current_revision,
            },
        )
        self.resource_type = resource_type
        self.key = key
        self.current_revision = current_revision


class InvalidStateError(KiprError):
    """Operation invoked on a closed or released entity."""

    default_code = "INVALID_STATE"
    status = 409

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class TransportError(KiprError):
    """Underlying network or remote-service failure.

    Raised when:
    - The service is unreachable or times out
    - The service answers with a 5xx status
    - The response body cannot be decoded
    """

    default_code = "UNAVAILABLE"
    status = 503

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            details={"url": url, "status_code": status_code},
        )
        self.url = url
        self.status_code = status_code


UnavailableError = TransportError


def error_from_dict(body: Dict[str, Any], status_code: int) -> KiprError:
    """Rebuild an SDK error from a REST error body.

    Only the detail keys each error type defines are read; anything else in
    the body is ignored. Unknown codes map to TransportError so the caller
    still gets a KiprError.
    """
    code = body.get("error_code", "")
    message = body.get("error") or f"Request failed with status {status_code}"
    details = body.get("details") or {}

    if code == ValidationError.default_code:
        return ValidationError(message, field_name=details.get("field"), value=details.get("value"))
    if code == AuthenticationError.default_code:
        return AuthenticationError(message)
    if code == PermissionDeniedError.default_code:
        return PermissionDeniedError(
            message,
            actor=details.get("actor"),
            resource_id=details.get("resource_id"),
            required_role=details.get("required_role"),
        )
    if code == NotFoundError.default_code:
        return NotFoundError(
            message,
            resource_type=details.get("resource_type"),
            resource_id=details.get("resource_id"),
        )
    if code == ConflictError.default_code:
        return ConflictError(
            message,
            resource_type=details.get("resource_type"),
            key=details.get("key"),
            current_revision=details.get("current_revision"),
        )
    if code == InvalidStateError.default_code:
        return InvalidStateError(
            message,
            resource_type=details.get("resource_type"),
            resource_id=details.get("resource_id"),
        )
    if code == TransportError.default_code:
        return TransportError(
            message,
            url=details.get("url"),
            status_code=details.get("status_code") or status_code,
        )
    return TransportError(message, status_code=status_code)
