"""
Input validation for the KIPR SDK.

This module provides validation utilities shared by every backend and by
the reference service:
- File path normalization
- Entity name checks
- Email address checks

Invariants:
    - Validation is deterministic and has no side effects
    - Failures raise ValidationError naming the offending field
    - Accepted paths are absolute and never end with '/'
"""

from __future__ import annotations

import re

from .errors import ValidationError

MAX_NAME_LENGTH = 128
MAX_PATH_LENGTH = 1024

# Local part, '@', dot-separated domain labels with a TLD of two or more letters.
_EMAIL_RE = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*"
    r"\.[A-Za-z]{2,}$"
)
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def normalize_path(path: str) -> str:
    """Validate a file path within a version.

    Args:
        path: Path such as "/src/main.c" ("/" is the project root)

    Returns:
        The path with any repeated slashes collapsed

    Raises:
        ValidationError: If the path is relative, names the root itself,
            ends with '/', or contains '.' or '..' segments
    """
    if not isinstance(path, str) or not path:
        raise ValidationError("Path must be a non-empty string", field_name="path", value=path)
    if len(path) > MAX_PATH_LENGTH:
        raise ValidationError(
            f"Path exceeds {MAX_PATH_LENGTH} characters", field_name="path", value=path
        )
    if not path.startswith("/"):
        raise ValidationError(
            f"Path '{path}' must be absolute ('/' is the project root)",
            field_name="path",
            value=path,
        )
    if path.endswith("/"):
        raise ValidationError(
            f"Path '{path}' must name a file, not a directory",
            field_name="path",
            value=path,
        )
    if _CONTROL_RE.search(path):
        raise ValidationError(
            "Path must not contain control characters", field_name="path", value=path
        )

    segments = [s for s in path.split("/") if s]
    for segment in segments:
        if segment in (".", ".."):
            raise ValidationError(
                f"Path '{path}' must not contain '.' or '..' segments",
                field_name="path",
                value=path,
            )

    return "/" + "/".join(segments)


def validate_name(name: str, field_name: str = "name") -> str:
    """Validate a display name (project, version, organization, user).

    Returns:
        The name with surrounding whitespace stripped
    """
    if not isinstance(name, str):
        raise ValidationError(f"{field_name} must be a string", field_name=field_name)

    stripped = name.strip()
    if not stripped:
        raise ValidationError(f"{field_name} must not be empty", field_name=field_name, value=name)
    if len(stripped) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"{field_name} exceeds {MAX_NAME_LENGTH} characters",
            field_name=field_name,
            value=name,
        )
    if _CONTROL_RE.search(stripped):
        raise ValidationError(
            f"{field_name} must not contain control characters",
            field_name=field_name,
            value=name,
        )
    return stripped


def validate_email(email: str) -> str:
    """Validate an email address against an RFC 5322 subset.

    Returns:
        The address with surrounding whitespace stripped
    """
    if not isinstance(email, str):
        raise ValidationError("Email must be a string", field_name="email")

    stripped = email.strip()
    if len(stripped) > 254 or not _EMAIL_RE.match(stripped):
        raise ValidationError(
            f"'{email}' is not a valid email address",
            field_name="email",
            value=email,
        )

    local = stripped.split("@", 1)[0]
    if len(local) > 64 or local.startswith(".") or local.endswith(".") or ".." in local:
        raise ValidationError(
            f"'{email}' is not a valid email address",
            field_name="email",
            value=email,
        )
    return stripped
